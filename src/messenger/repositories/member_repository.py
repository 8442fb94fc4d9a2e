"""
Per-participant read state (unread counters).
"""

from datetime import datetime
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
import logging

from messenger.models.conversation_member import ConversationMember
from .base_repository import BaseRepository, NotFoundError

logger = logging.getLogger(__name__)


class MemberRepository(BaseRepository[ConversationMember]):
    """Repository for ConversationMember rows."""

    def __init__(self, db: AsyncSession):
        super().__init__(ConversationMember, db)

    async def get_member(self, conversation_id: UUID, user_id: UUID) -> ConversationMember:
        result = await self.db.execute(
            select(ConversationMember).where(
                ConversationMember.conversation_id == conversation_id,
                ConversationMember.user_id == user_id,
            )
        )
        member = result.scalar_one_or_none()
        if member is None:
            raise NotFoundError(
                f"User {user_id} is not a member of conversation {conversation_id}",
                fields=["conversation_id"],
            )
        return member

    async def unread_counts(self, user_id: UUID, conversation_ids: list[UUID]) -> dict[UUID, int]:
        """Unread count per conversation for `user_id` (0 when no row)."""
        if not conversation_ids:
            return {}
        result = await self.db.execute(
            select(ConversationMember.conversation_id, ConversationMember.unread_count).where(
                ConversationMember.user_id == user_id,
                ConversationMember.conversation_id.in_(conversation_ids),
            )
        )
        counts = {cid: 0 for cid in conversation_ids}
        counts.update({cid: count for cid, count in result.all()})
        return counts

    async def increment_unread(self, conversation_id: UUID, user_id: UUID, by: int = 1) -> int:
        """
        Atomically bump `user_id`'s unread counter and return the new value.
        """
        await self.db.execute(
            update(ConversationMember)
            .where(
                ConversationMember.conversation_id == conversation_id,
                ConversationMember.user_id == user_id,
            )
            .values(unread_count=ConversationMember.unread_count + by)
        )
        member = await self.get_member(conversation_id, user_id)
        await self.db.refresh(member, attribute_names=["unread_count"])
        return member.unread_count

    async def mark_read(self, conversation_id: UUID, user_id: UUID, at: datetime) -> int:
        """
        Reset `user_id`'s unread counter. Returns the count before the reset.
        """
        member = await self.get_member(conversation_id, user_id)
        previous = member.unread_count
        member.unread_count = 0
        member.last_read_at = at
        await self.db.flush()
        logger.debug(
            "member.mark_read",
            extra={"conversation_id": conversation_id, "viewer_id": user_id, "cleared": previous},
        )
        return previous
