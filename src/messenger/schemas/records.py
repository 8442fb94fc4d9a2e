"""
Viewer-facing records returned by the conversation store.

Records are immutable pydantic models; the store builds them per viewer
(`unread_count` and the counterpart fields depend on who is asking).
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class MessageRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    conversation_id: UUID
    sender_id: UUID
    sender_name: str = "User"
    content: str
    client_message_id: UUID | None = None
    created_at: datetime


class ConversationRecord(BaseModel):
    """
    One conversation as seen by `viewer_id`.

    `last_message_at` is None until the first message; such conversations sort
    after messaged ones.
    """
    model_config = ConfigDict(frozen=True)

    id: UUID
    viewer_id: UUID
    participant_ids: tuple[UUID, UUID]
    counterpart_id: UUID
    counterpart_name: str = "User"
    counterpart_avatar_url: str | None = None
    pet_context_id: UUID | None = None
    pet_name: str | None = None
    pet_image_url: str | None = None
    last_message: str | None = None
    last_message_at: datetime | None = None
    unread_count: int = 0
    created_at: datetime


class StartConversationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    conversation: ConversationRecord
    message: MessageRecord
    created: bool
