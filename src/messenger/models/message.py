from sqlalchemy import ForeignKey, Text, Uuid, Index
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from messenger.database.base import Base
from messenger.database.types import UTCDateTime, utcnow
import uuid


class Message(Base):
    """
    SQLAlchemy model representing a message in a two-party conversation.

    Messages are immutable once written. `created_at` is assigned at insert and
    is the only display ordering key (ties broken by `id`).
    `client_message_id` carries the sender's optimistic id so the client can
    swap its pending entry for this row.
    """
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        index=True
    )

    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    sender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id"),
        nullable=False,
        index=True
    )

    content: Mapped[str] = mapped_column(
        Text,
        nullable=False
    )

    client_message_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        nullable=True,
        unique=True
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<Message(id={self.id!r}, conversation_id={self.conversation_id!r}, "
            f"sender_id={self.sender_id!r})>"
        )
