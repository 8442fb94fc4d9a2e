from sqlalchemy import String, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from messenger.database.base import Base
from messenger.database.types import UTCDateTime, utcnow
import uuid


class Profile(Base):
    """
    SQLAlchemy model for a marketplace member's public profile.

    Only the fields messaging renders are modelled here: the display name shown
    on conversation rows and message bubbles, and the avatar.
    """
    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        index=True
    )

    display_name: Mapped[str | None] = mapped_column(
        String(120),
        nullable=True
    )

    avatar_url: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Profile(id={self.id!r}, display_name={self.display_name!r})>"
