from sqlalchemy import String, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from messenger.database.base import Base
import uuid


class PetListing(Base):
    """
    Read-only view of an adoption listing.

    Conversations may be scoped to a listing ("pet context"); the listing's name
    and image are shown in the inbox and thread header.
    """
    __tablename__ = "pet_listings"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        index=True
    )

    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id"),
        nullable=False,
        index=True
    )

    pet_name: Mapped[str] = mapped_column(
        String(120),
        nullable=False
    )

    image_url: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True
    )

    def __repr__(self) -> str:
        return f"<PetListing(id={self.id!r}, pet_name={self.pet_name!r})>"
