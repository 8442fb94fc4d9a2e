from sqlalchemy import ForeignKey, Integer, Uuid, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from messenger.database.base import Base
from messenger.database.types import UTCDateTime
import uuid


class ConversationMember(Base):
    """
    Per-participant read state for a Conversation.

    `unread_count` counts messages from the counterpart that this member has
    not acknowledged; it is reset by a read acknowledgement.
    """
    __tablename__ = "conversation_members"
    __table_args__ = (
        UniqueConstraint("conversation_id", "user_id", name="uq_conversation_members_member"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )

    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id"),
        nullable=False,
        index=True
    )

    unread_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False
    )

    last_read_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<ConversationMember(conversation_id={self.conversation_id!r}, "
            f"user_id={self.user_id!r}, unread_count={self.unread_count!r})>"
        )
