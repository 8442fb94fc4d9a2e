"""
Conversation list view-model.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from uuid import UUID

from messenger.gateway.message_gateway import MessageGateway
from messenger.gateway.queries import ConversationsQuery
from messenger.schemas.records import ConversationRecord
from .formatting import relative_time, truncate

SKELETON_ROWS = 5
EMPTY_TITLE = "No conversations yet"
EMPTY_BODY = "Message a caregiver from any pet's detail page to get started!"
NO_MESSAGES_PREVIEW = "No messages yet"


class ListState(str, Enum):
    LOADING = "loading"
    EMPTY = "empty"
    POPULATED = "populated"


@dataclass(frozen=True)
class ConversationRow:
    conversation_id: UUID
    title: str
    avatar_url: str | None
    pet_name: str | None
    preview: str
    time_label: str
    unread_badge: str | None
    is_selected: bool

    @property
    def is_unread(self) -> bool:
        return self.unread_badge is not None


@dataclass(frozen=True)
class ConversationListModel:
    state: ListState
    rows: tuple[ConversationRow, ...] = ()
    skeleton_rows: int = 0
    empty_title: str | None = None
    empty_body: str | None = None
    error_banner: str | None = None


class ConversationListView:
    def __init__(self, query: ConversationsQuery, gateway: MessageGateway, *, preview_limit: int = 60):
        self._query = query
        self._gateway = gateway
        self._preview_limit = preview_limit
        self.selected_id: UUID | None = None

    def render(self, now: datetime | None = None) -> ConversationListModel:
        now = now or datetime.now(timezone.utc)
        banner = self._query.error.message if self._query.error else None

        if not self._query.is_loaded:
            if self._query.error is None:
                return ConversationListModel(state=ListState.LOADING, skeleton_rows=SKELETON_ROWS)
            return ConversationListModel(
                state=ListState.EMPTY, empty_title=EMPTY_TITLE, empty_body=EMPTY_BODY, error_banner=banner
            )

        records = self._gateway.cache.conversations()
        if not records:
            return ConversationListModel(
                state=ListState.EMPTY, empty_title=EMPTY_TITLE, empty_body=EMPTY_BODY, error_banner=banner
            )

        rows = tuple(self._row(record, now) for record in records)
        return ConversationListModel(state=ListState.POPULATED, rows=rows, error_banner=banner)

    def mark_selected(self, conversation_id: UUID) -> int:
        """Select without suspending: zero the unread count locally. Returns the cleared count."""
        previous = self._gateway.clear_unread(conversation_id)
        self.selected_id = conversation_id
        return previous

    async def select(self, conversation_id: UUID) -> int:
        """
        Select a conversation. Its unread count drops to zero in the cache
        before this coroutine first suspends; the store is told afterwards.
        Returns the count that was cleared.
        """
        previous = self.mark_selected(conversation_id)
        await self._gateway.acknowledge_read(conversation_id, previous)
        return previous

    def clear_selection(self) -> None:
        self.selected_id = None

    async def retry(self) -> None:
        await self._query.refetch()

    def dismiss_error(self) -> None:
        self._query.dismiss_error()

    def _row(self, record: ConversationRecord, now: datetime) -> ConversationRow:
        preview = truncate(record.last_message, self._preview_limit) if record.last_message else NO_MESSAGES_PREVIEW
        return ConversationRow(
            conversation_id=record.id,
            title=record.counterpart_name or "User",
            avatar_url=record.counterpart_avatar_url,
            pet_name=record.pet_name,
            preview=preview,
            time_label=relative_time(record.last_message_at, now) if record.last_message_at else "",
            unread_badge=str(record.unread_count) if record.unread_count > 0 else None,
            is_selected=record.id == self.selected_id,
        )
