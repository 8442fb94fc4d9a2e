"""
Message repository: append-only message storage for a conversation.
"""

from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
import logging

from messenger.models.message import Message
from .base_repository import BaseRepository, RepositoryError

logger = logging.getLogger(__name__)


class MessageRepository(BaseRepository[Message]):
    """
    Repository for Message entity operations.

    Messages are never updated or deleted through this repository.
    """

    def __init__(self, db: AsyncSession):
        super().__init__(Message, db)

    async def create_message(
        self,
        conversation_id: UUID,
        sender_id: UUID,
        content: str,
        client_message_id: UUID | None = None,
    ) -> Message:
        """
        Insert a message. Content is expected to be trimmed and validated by the caller.

        Args:
            conversation_id (UUID): The conversation the message belongs to.
            sender_id (UUID): The participant sending it.
            content (str): Message text.
            client_message_id (UUID | None): The sender's optimistic id, if any.

        Returns:
            Message: The flushed Message with its store-assigned id and created_at.

        Raises:
            DuplicateError: `client_message_id` was already used.
            NotFoundError: The conversation or sender does not exist.
        """
        message = await self.create(
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            client_message_id=client_message_id,
        )
        logger.debug(
            "message.created",
            extra={"conversation_id": conversation_id, "message_id": message.id, "length": len(content)},
        )
        return message

    async def get_by_client_message_id(self, client_message_id: UUID) -> Message | None:
        result = await self.db.execute(
            select(Message).where(Message.client_message_id == client_message_id)
        )
        return result.scalar_one_or_none()

    async def list_for_conversation(self, conversation_id: UUID) -> list[Message]:
        """
        Messages of a conversation in display order: created_at ascending, then id.
        """
        query = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.asc(), Message.id.asc())
        )
        try:
            result = await self.db.execute(query)
        except Exception as e:
            logger.error(f"Error retrieving messages for conversation {conversation_id}: {e}")
            raise RepositoryError("Failed to retrieve conversation messages") from e

        messages = list(result.scalars().all())
        logger.debug(f"Retrieved {len(messages)} messages for conversation: {conversation_id}")
        return messages
