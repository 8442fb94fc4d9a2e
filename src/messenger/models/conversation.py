from sqlalchemy import String, ForeignKey, Uuid, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from messenger.database.base import Base
from messenger.database.types import UTCDateTime, utcnow
import uuid

NO_PET_CONTEXT = ""


def ordered_pair(a: uuid.UUID, b: uuid.UUID) -> tuple[uuid.UUID, uuid.UUID]:
    """Return the two participant ids in canonical (low, high) order."""
    return (a, b) if str(a) <= str(b) else (b, a)


def pet_context_key(pet_context_id: uuid.UUID | None) -> str:
    """Non-null form of the pet context used in the uniqueness key."""
    return str(pet_context_id) if pet_context_id is not None else NO_PET_CONTEXT


class Conversation(Base):
    """
    SQLAlchemy model for a two-party Conversation.

    The unordered participant pair is stored sorted (`participant_low`,
    `participant_high`) and the optional pet context is mirrored into the
    non-null `pet_context_key`, so a single UNIQUE constraint enforces at most
    one conversation per (pair, pet context) including "no pet".

    `last_message` / `last_message_at` are a denormalized preview of the newest
    message and the conversation list's sort key.
    """
    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint(
            "participant_low",
            "participant_high",
            "pet_context_key",
            name="uq_conversations_pair_pet",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        index=True
    )

    participant_low: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id"),
        nullable=False,
        index=True
    )

    participant_high: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id"),
        nullable=False,
        index=True
    )

    pet_context_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("pet_listings.id"),
        nullable=True
    )

    pet_context_key: Mapped[str] = mapped_column(
        String(36),
        default=NO_PET_CONTEXT,
        nullable=False
    )

    last_message: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True
    )

    last_message_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
        index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False
    )

    @property
    def participant_ids(self) -> frozenset[uuid.UUID]:
        return frozenset((self.participant_low, self.participant_high))

    def has_participant(self, user_id: uuid.UUID) -> bool:
        return user_id in self.participant_ids

    def counterpart_of(self, user_id: uuid.UUID) -> uuid.UUID:
        """The other participant; raises ValueError for outsiders."""
        if user_id == self.participant_low:
            return self.participant_high
        if user_id == self.participant_high:
            return self.participant_low
        raise ValueError(f"{user_id} is not a participant of conversation {self.id}")

    def __repr__(self) -> str:
        return (
            f"<Conversation(id={self.id!r}, participants=({self.participant_low!r}, "
            f"{self.participant_high!r}), pet_context_id={self.pet_context_id!r})>"
        )
