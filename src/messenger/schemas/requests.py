from uuid import UUID

from pydantic import BaseModel, Field


class SendMessageRequest(BaseModel):
    content: str = Field(..., max_length=5000)
    client_message_id: UUID | None = None


class StartConversationRequest(BaseModel):
    recipient_id: UUID
    pet_context_id: UUID | None = None
    initial_message: str = Field(..., max_length=5000)
    client_message_id: UUID | None = None


class MarkReadResponse(BaseModel):
    conversation_id: UUID
    cleared: int
