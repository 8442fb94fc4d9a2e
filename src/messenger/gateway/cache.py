"""
Client-side messaging cache.

One `MessagingCache` per viewer session holds the conversation list and the
per-conversation message threads. It is the single source both surfaces read
from; only the gateway and the realtime sync write to it.

Optimistic sends are tracked with an explicit state machine:

    PENDING -> CONFIRMED    the store accepted the write
    PENDING -> FAILED       the store rejected it or timed out

CONFIRMED and FAILED are terminal. FAILED entries are dropped from the thread.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable
from uuid import UUID, uuid4

from messenger.schemas.records import ConversationRecord, MessageRecord

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class MessageState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


_TRANSITIONS: dict[MessageState, frozenset[MessageState]] = {
    MessageState.PENDING: frozenset({MessageState.CONFIRMED, MessageState.FAILED}),
    MessageState.CONFIRMED: frozenset(),
    MessageState.FAILED: frozenset(),
}


class InvalidTransitionError(ValueError):
    def __init__(self, current: MessageState, target: MessageState):
        super().__init__(f"cannot move message from {current.value} to {target.value}")
        self.current = current
        self.target = target


@dataclass
class CachedMessage:
    """
    A message as the viewer sees it.

    `local_id` is stable for the entry's whole life: the client_message_id for
    optimistic entries, the store id for entries that arrived confirmed.
    """

    local_id: UUID
    conversation_id: UUID
    sender_id: UUID
    content: str
    created_at: datetime
    sender_name: str = "User"
    state: MessageState = MessageState.CONFIRMED
    id: UUID | None = None
    client_message_id: UUID | None = None
    error: str | None = None

    @classmethod
    def from_record(cls, record: MessageRecord) -> "CachedMessage":
        return cls(
            local_id=record.id,
            conversation_id=record.conversation_id,
            sender_id=record.sender_id,
            sender_name=record.sender_name,
            content=record.content,
            created_at=record.created_at,
            state=MessageState.CONFIRMED,
            id=record.id,
            client_message_id=record.client_message_id,
        )

    @classmethod
    def pending(
        cls,
        conversation_id: UUID,
        sender_id: UUID,
        content: str,
        *,
        sender_name: str = "You",
        now: datetime | None = None,
    ) -> "CachedMessage":
        client_message_id = uuid4()
        return cls(
            local_id=client_message_id,
            conversation_id=conversation_id,
            sender_id=sender_id,
            sender_name=sender_name,
            content=content,
            created_at=now or datetime.now(timezone.utc),
            state=MessageState.PENDING,
            client_message_id=client_message_id,
        )

    @property
    def is_pending(self) -> bool:
        return self.state is MessageState.PENDING

    @property
    def sort_key(self) -> tuple[datetime, str]:
        return (self.created_at, str(self.id or self.local_id))

    def transition(self, target: MessageState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state, target)
        self.state = target

    def confirm(self, record: MessageRecord) -> None:
        """Adopt the canonical id, timestamp and content from the store."""
        self.transition(MessageState.CONFIRMED)
        self.id = record.id
        self.created_at = record.created_at
        self.content = record.content
        self.sender_name = record.sender_name

    def fail(self, error: str) -> None:
        self.transition(MessageState.FAILED)
        self.error = error


Listener = Callable[[str, "UUID | None"], None]


class MessagingCache:
    """
    Conversation list and message threads for one viewer.

    Listeners are called with `("conversations", None)` or
    `("messages", conversation_id)` after every change.
    """

    def __init__(self, viewer_id: UUID):
        self.viewer_id = viewer_id
        self.conversations_loaded = False
        self._conversations: dict[UUID, ConversationRecord] = {}
        self._threads: dict[UUID, list[CachedMessage]] = {}
        # last_message_at at the moment the viewer cleared a conversation
        self._read_marks: dict[UUID, datetime | None] = {}
        self._listeners: list[Listener] = []

    # =================================================================================================================
    # Listeners
    # =================================================================================================================

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, kind: str, conversation_id: UUID | None = None) -> None:
        for listener in list(self._listeners):
            listener(kind, conversation_id)

    # =================================================================================================================
    # Conversations
    # =================================================================================================================

    def conversations(self) -> list[ConversationRecord]:
        """Most recent activity first; never-messaged conversations last, newest first."""
        messaged = [c for c in self._conversations.values() if c.last_message_at is not None]
        silent = [c for c in self._conversations.values() if c.last_message_at is None]
        messaged.sort(key=lambda c: (c.last_message_at, c.created_at), reverse=True)
        silent.sort(key=lambda c: c.created_at, reverse=True)
        return messaged + silent

    def get_conversation(self, conversation_id: UUID) -> ConversationRecord | None:
        return self._conversations.get(conversation_id)

    def find_conversation(
        self,
        counterpart_id: UUID,
        pet_context_id: UUID | None,
        *,
        any_pet: bool = False,
    ) -> ConversationRecord | None:
        """
        Loaded conversation with `counterpart_id` about `pet_context_id`.

        With `any_pet=True` the pet context is ignored and the most recently
        active conversation with the counterpart wins.
        """
        for record in self.conversations():
            if record.counterpart_id != counterpart_id:
                continue
            if any_pet or record.pet_context_id == pet_context_id:
                return record
        return None

    def total_unread(self) -> int:
        return sum(c.unread_count for c in self._conversations.values())

    def replace_conversations(self, records: list[ConversationRecord]) -> None:
        """Install a fresh snapshot from the store."""
        self._conversations = {}
        for record in records:
            if record.viewer_id != self.viewer_id:
                continue
            self._conversations[record.id] = self._apply_read_mark(record)
        self.conversations_loaded = True
        self._notify("conversations")

    def merge_conversation(self, record: ConversationRecord) -> bool:
        """
        Merge one conversation record. Older snapshots never overwrite newer ones.

        Returns True when the cache changed. Applying the same record twice is a
        no-op the second time.
        """
        if record.viewer_id != self.viewer_id:
            return False

        record = self._apply_read_mark(record)
        current = self._conversations.get(record.id)
        if current is not None and _activity(record) < _activity(current):
            return False
        if current == record:
            return False

        self._conversations[record.id] = record
        self._notify("conversations")
        return True

    def clear_unread(self, conversation_id: UUID) -> int:
        """
        Zero the viewer's unread count locally. Returns the previous count.

        Records for the same or older activity that still carry a non-zero count
        (the store has not seen the acknowledgement yet) are ignored afterwards.
        """
        current = self._conversations.get(conversation_id)
        if current is None:
            return 0

        self._read_marks[conversation_id] = current.last_message_at
        previous = current.unread_count
        if previous:
            self._conversations[conversation_id] = current.model_copy(update={"unread_count": 0})
            self._notify("conversations")
        return previous

    def update_preview(self, conversation_id: UUID, preview: str, at: datetime) -> None:
        """Move the conversation's last-message preview forward (never back)."""
        current = self._conversations.get(conversation_id)
        if current is None:
            return
        if current.last_message_at is not None and at < current.last_message_at:
            return
        self._conversations[conversation_id] = current.model_copy(
            update={"last_message": preview, "last_message_at": at}
        )
        self._notify("conversations")

    def _apply_read_mark(self, record: ConversationRecord) -> ConversationRecord:
        if record.unread_count == 0 or record.id not in self._read_marks:
            return record
        mark = self._read_marks[record.id]
        stale = record.last_message_at is None or (mark is not None and record.last_message_at <= mark)
        if stale:
            return record.model_copy(update={"unread_count": 0})
        return record

    # =================================================================================================================
    # Messages
    # =================================================================================================================

    def has_thread(self, conversation_id: UUID) -> bool:
        return conversation_id in self._threads

    def messages(self, conversation_id: UUID) -> list[CachedMessage]:
        """Visible messages ascending by created_at; failed sends are excluded."""
        entries = [m for m in self._threads.get(conversation_id, ()) if m.state is not MessageState.FAILED]
        return sorted(entries, key=lambda m: m.sort_key)

    def replace_messages(self, conversation_id: UUID, records: list[MessageRecord]) -> None:
        """
        Install a fetched thread. Pending entries the snapshot does not contain
        yet are kept, as are realtime deliveries newer than the snapshot; the
        snapshot wins for everything else.
        """
        snapshot = [CachedMessage.from_record(r) for r in records]
        known_ids = {m.id for m in snapshot}
        known_client_ids = {m.client_message_id for m in snapshot if m.client_message_id}
        newest = max((m.created_at for m in snapshot), default=None)

        kept: list[CachedMessage] = []
        for entry in self._threads.get(conversation_id, ()):
            if not entry.is_pending:
                if entry.id not in known_ids and (newest is None or entry.created_at > newest):
                    kept.append(entry)
                continue
            if entry.client_message_id in known_client_ids:
                # The store already has it; adopt the canonical row in place.
                record = next(r for r in records if r.client_message_id == entry.client_message_id)
                entry.confirm(record)
                snapshot = [m for m in snapshot if m.id != record.id]
            kept.append(entry)

        self._threads[conversation_id] = snapshot + kept
        self._notify("messages", conversation_id)

    def add_pending(self, entry: CachedMessage) -> None:
        if not entry.is_pending:
            raise ValueError("add_pending expects a PENDING entry")
        self._threads.setdefault(entry.conversation_id, []).append(entry)
        self._notify("messages", entry.conversation_id)

    def confirm(self, local_id: UUID, record: MessageRecord) -> CachedMessage:
        """
        Resolve a pending entry with the store's canonical row.

        If realtime already delivered the row as a separate entry, that duplicate
        is dropped so the message appears once.
        """
        thread = self._threads.setdefault(record.conversation_id, [])
        entry = next((m for m in thread if m.local_id == local_id), None)

        if entry is None:
            # The pending entry is gone (thread was replaced); fall back to a merge.
            self.merge_message(record)
            return next(m for m in thread if m.id == record.id)

        if entry.is_pending:
            entry.confirm(record)
        self._threads[record.conversation_id] = [
            m for m in thread if m is entry or m.id != record.id
        ]
        self._notify("messages", record.conversation_id)
        return entry

    def fail(self, conversation_id: UUID, local_id: UUID, error: str) -> CachedMessage | None:
        """Mark a pending entry FAILED and withdraw it from the thread."""
        thread = self._threads.get(conversation_id, [])
        entry = next((m for m in thread if m.local_id == local_id), None)
        if entry is None:
            return None
        entry.fail(error)
        self._threads[conversation_id] = [m for m in thread if m is not entry]
        self._notify("messages", conversation_id)
        return entry

    def merge_message(self, record: MessageRecord) -> bool:
        """
        Merge a confirmed message. Deduplicates by store id, then by
        client_message_id (confirming a matching pending entry in place).
        Returns True when the thread changed.
        """
        thread = self._threads.setdefault(record.conversation_id, [])

        if any(m.id == record.id for m in thread):
            return False

        if record.client_message_id is not None:
            for entry in thread:
                if entry.client_message_id == record.client_message_id and entry.is_pending:
                    entry.confirm(record)
                    self._notify("messages", record.conversation_id)
                    return True

        thread.append(CachedMessage.from_record(record))
        self._notify("messages", record.conversation_id)
        return True

    def forget_thread(self, conversation_id: UUID) -> None:
        self._threads.pop(conversation_id, None)


def _activity(record: ConversationRecord) -> datetime:
    return record.last_message_at or _EPOCH


__all__ = [
    "MessageState",
    "InvalidTransitionError",
    "CachedMessage",
    "MessagingCache",
]
