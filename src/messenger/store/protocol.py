from typing import Protocol
from uuid import UUID

from messenger.schemas.records import ConversationRecord, MessageRecord, StartConversationResult


class ConversationStoreProtocol(Protocol):
    """
    Data access contract the client gateway depends on.

    Implemented by `ConversationStore` (SQLAlchemy) and by test doubles.
    Every call is scoped to `viewer_id`; conversations the viewer does not
    take part in behave as if they did not exist.
    """

    async def list_conversations(self, viewer_id: UUID) -> list[ConversationRecord]: ...

    async def list_messages(self, viewer_id: UUID, conversation_id: UUID) -> list[MessageRecord]: ...

    async def send_message(
        self,
        viewer_id: UUID,
        conversation_id: UUID,
        content: str,
        client_message_id: UUID | None = None,
    ) -> MessageRecord: ...

    async def start_conversation(
        self,
        viewer_id: UUID,
        recipient_id: UUID,
        pet_context_id: UUID | None,
        initial_message: str,
        client_message_id: UUID | None = None,
    ) -> StartConversationResult: ...

    async def mark_read(self, viewer_id: UUID, conversation_id: UUID) -> int: ...
