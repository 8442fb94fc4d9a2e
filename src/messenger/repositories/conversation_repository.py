"""
Conversation repository for two-party conversation lookups and creation.

A conversation is identified by its unordered participant pair plus an
optional pet context. `find_by_key` and `create_conversation` both work with
the canonical (low, high) ordering so the database unique constraint can
arbitrate concurrent creators.
"""

from datetime import datetime
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_
import logging

from messenger.models.conversation import Conversation, ordered_pair, pet_context_key
from .member_repository import MemberRepository
from .base_repository import BaseRepository, NotFoundError, RepositoryError

logger = logging.getLogger(__name__)


class ConversationRepository(BaseRepository[Conversation]):
    """
    Repository for Conversation entity operations.

    Extends BaseRepository with:
      - lookup by (participant pair, pet context)
      - creation together with both members' read-state rows
      - participant-scoped listing and access checks
      - denormalized last-message preview updates
    """

    def __init__(self, db: AsyncSession):
        """
        Args:
            db (AsyncSession): The SQLAlchemy asynchronous database session.
        """
        super().__init__(Conversation, db)

    # =================================================================================================================
    # Create Operations
    # =================================================================================================================

    async def create_conversation(
        self,
        first_participant: UUID,
        second_participant: UUID,
        pet_context_id: UUID | None = None,
    ) -> Conversation:
        """
        Create a conversation and one ConversationMember per participant.

        Args:
            first_participant: One participant (order does not matter).
            second_participant: The other participant.
            pet_context_id: Optional pet listing the conversation is about.

        Returns:
            Conversation: The new, flushed conversation (read-state rows created).

        Raises:
            DuplicateError: A conversation with the same key already exists.
            NotFoundError: A participant or the pet listing does not exist.
        """
        low, high = ordered_pair(first_participant, second_participant)
        conversation = await self.create(
            participant_low=low,
            participant_high=high,
            pet_context_id=pet_context_id,
            pet_context_key=pet_context_key(pet_context_id),
        )

        members = MemberRepository(self.db)
        for user_id in (low, high):
            await members.create(conversation_id=conversation.id, user_id=user_id, unread_count=0)

        logger.info(
            "conversation.created",
            extra={"conversation_id": conversation.id, "has_pet_context": pet_context_id is not None},
        )
        return conversation

    # =================================================================================================================
    # Read Operations
    # =================================================================================================================

    async def find_by_key(
        self,
        first_participant: UUID,
        second_participant: UUID,
        pet_context_id: UUID | None = None,
    ) -> Conversation | None:
        """
        Return the conversation for this (pair, pet context), or None.
        """
        low, high = ordered_pair(first_participant, second_participant)
        query = select(Conversation).where(
            Conversation.participant_low == low,
            Conversation.participant_high == high,
            Conversation.pet_context_key == pet_context_key(pet_context_id),
        )
        try:
            result = await self.db.execute(query)
        except Exception as e:
            logger.error(f"Error looking up conversation by key: {e}")
            raise RepositoryError("Failed to look up conversation") from e
        return result.scalar_one_or_none()

    async def list_for_participant(self, user_id: UUID) -> list[Conversation]:
        """
        All conversations `user_id` takes part in, most recent activity first.

        Never-messaged conversations come after messaged ones, newest first.
        """
        query = (
            select(Conversation)
            .where(or_(Conversation.participant_low == user_id, Conversation.participant_high == user_id))
            .order_by(
                Conversation.last_message_at.desc().nulls_last(),
                Conversation.created_at.desc(),
            )
        )
        try:
            result = await self.db.execute(query)
        except Exception as e:
            logger.error(f"Error listing conversations for {user_id}: {e}")
            raise RepositoryError("Failed to list conversations") from e

        conversations = list(result.scalars().all())
        logger.debug(f"Retrieved {len(conversations)} conversations for participant: {user_id}")
        return conversations

    async def get_for_participant(self, conversation_id: UUID, user_id: UUID) -> Conversation:
        """
        Return the conversation if `user_id` participates in it.

        Raises:
            NotFoundError: The conversation does not exist or `user_id` is not a
                participant (outsiders cannot test for existence).
        """
        conversation = await self.get_by_id(conversation_id)
        if conversation is None or not conversation.has_participant(user_id):
            raise NotFoundError(f"Conversation with ID {conversation_id} not found", fields=["conversation_id"])
        return conversation

    # =================================================================================================================
    # Update Operations
    # =================================================================================================================

    async def set_last_message(self, conversation: Conversation, preview: str, at: datetime) -> Conversation:
        """
        Update the denormalized preview unless a newer message already set it.
        """
        if conversation.last_message_at is not None and conversation.last_message_at > at:
            return conversation

        conversation.last_message = preview
        conversation.last_message_at = at
        await self.db.flush()
        return conversation
