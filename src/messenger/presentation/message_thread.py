"""
Message thread view-model: day grouping, bubbles, composer and auto-scroll.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone, tzinfo
from typing import Protocol, Sequence, TypeVar
from uuid import UUID

from messenger.gateway.cache import CachedMessage
from messenger.gateway.message_gateway import MessageGateway
from messenger.gateway.queries import QueryStatus, SendMutation, ThreadQuery
from .formatting import day_label, relative_time

EMPTY_THREAD_TEXT = "No messages yet. Say hello! 👋"
MODERATION_NOTICE = "🛡️ All messages are monitored by the admin for safety and monitoring purposes."
COMPOSER_PLACEHOLDER = "Type a message..."


class _Timestamped(Protocol):
    created_at: datetime


M = TypeVar("M", bound=_Timestamped)


@dataclass(frozen=True)
class DayGroup:
    day: date
    label: str
    messages: tuple


def group_by_day(messages: Sequence[M], tz: tzinfo, now: datetime | None = None) -> list[DayGroup]:
    """
    Bucket messages by calendar day in `tz`, keeping their order.

    A new bucket starts whenever the local day differs from the previous
    message's. Labels are "Today", "Yesterday" or e.g. "Jan 5, 2024",
    relative to `now` in the same zone.
    """
    today = (now or datetime.now(timezone.utc)).astimezone(tz).date()
    groups: list[DayGroup] = []
    current: list = []
    current_day: date | None = None

    for message in messages:
        day = message.created_at.astimezone(tz).date()
        if current_day is not None and day != current_day:
            groups.append(DayGroup(current_day, day_label(current_day, today), tuple(current)))
            current = []
        current_day = day
        current.append(message)

    if current_day is not None:
        groups.append(DayGroup(current_day, day_label(current_day, today), tuple(current)))
    return groups


@dataclass(frozen=True)
class MessageBubble:
    key: UUID
    content: str
    time_label: str
    is_mine: bool
    sender_name: str | None
    is_pending: bool


@dataclass(frozen=True)
class BubbleGroup:
    label: str
    bubbles: tuple[MessageBubble, ...]


@dataclass(frozen=True)
class ThreadHeader:
    title: str
    image_url: str | None
    subtitle: str | None


@dataclass(frozen=True)
class ThreadModel:
    conversation_id: UUID
    header: ThreadHeader | None
    notice: str
    is_loading: bool
    groups: tuple[BubbleGroup, ...]
    empty_text: str | None
    error_banner: str | None
    composer_text: str
    composer_placeholder: str
    composer_disabled: bool
    can_send: bool
    send_error: str | None
    scroll_to_bottom: bool
    has_new_below: bool


class Composer:
    """
    Single-line input bound to a `SendMutation`.

    Submitting trims the text and clears the input at once; when the send
    fails the text comes back, unless the user has started typing again.
    """

    def __init__(self, mutation: SendMutation):
        self._mutation = mutation
        self.text = ""

    @property
    def is_disabled(self) -> bool:
        return self._mutation.is_pending

    @property
    def can_submit(self) -> bool:
        return bool(self.text.strip()) and not self.is_disabled

    @property
    def error(self) -> str | None:
        return self._mutation.error.message if self._mutation.error else None

    def set_text(self, text: str) -> None:
        self.text = text

    async def submit(self, conversation_id: UUID) -> bool:
        content = self.text.strip()
        if not content or self.is_disabled:
            return False

        self.text = ""
        sent = await self._mutation.send(conversation_id, content)
        if sent is None:
            if not self.text:
                self.text = content
            return False
        return True


class ScrollFollower:
    """
    Decides when the thread should jump to the newest message.

    On growth it scrolls when the newest message is the viewer's own or the
    viewer is within `near_bottom_px` of the bottom; otherwise it raises
    `has_new_below` instead. Switching conversation always scrolls, once its
    messages are there.
    """

    def __init__(self, near_bottom_px: int = 120):
        self.near_bottom_px = near_bottom_px
        self.has_new_below = False
        self._conversation_id: UUID | None = None
        self._count = 0
        self._jump_pending = False

    def observe(
        self,
        conversation_id: UUID,
        messages: Sequence[CachedMessage],
        viewer_id: UUID,
        distance_from_bottom: float = 0.0,
    ) -> bool:
        switched = conversation_id != self._conversation_id
        grew = len(messages) > self._count
        self._conversation_id = conversation_id
        self._count = len(messages)

        if switched:
            self.has_new_below = False
            self._jump_pending = not messages
            return bool(messages)
        if not grew:
            return False
        mine = messages[-1].sender_id == viewer_id
        if self._jump_pending or mine or distance_from_bottom <= self.near_bottom_px:
            self._jump_pending = False
            self.has_new_below = False
            return True
        self.has_new_below = True
        return False

    def reached_bottom(self) -> None:
        self.has_new_below = False


class MessageThreadView:
    def __init__(
        self,
        thread: ThreadQuery,
        gateway: MessageGateway,
        composer: Composer,
        *,
        tz: tzinfo = timezone.utc,
        near_bottom_px: int = 120,
    ):
        self._thread = thread
        self._gateway = gateway
        self.composer = composer
        self.scroll = ScrollFollower(near_bottom_px)
        self._tz = tz

    @property
    def conversation_id(self) -> UUID | None:
        return self._thread.conversation_id

    async def send(self) -> bool:
        if self.conversation_id is None:
            return False
        return await self.composer.submit(self.conversation_id)

    def render(self, now: datetime | None = None, *, distance_from_bottom: float = 0.0) -> ThreadModel | None:
        """None when no conversation is selected."""
        conversation_id = self._thread.conversation_id
        if conversation_id is None:
            return None

        now = now or datetime.now(timezone.utc)
        viewer_id = self._gateway.viewer_id
        messages = self._thread.messages
        is_loading = self._thread.status is QueryStatus.LOADING and not messages

        groups = tuple(
            BubbleGroup(
                label=group.label,
                bubbles=tuple(self._bubble(m, viewer_id, now) for m in group.messages),
            )
            for group in group_by_day(messages, self._tz, now)
        )
        scroll = self.scroll.observe(conversation_id, messages, viewer_id, distance_from_bottom)

        return ThreadModel(
            conversation_id=conversation_id,
            header=self._header(conversation_id),
            notice=MODERATION_NOTICE,
            is_loading=is_loading,
            groups=groups,
            empty_text=EMPTY_THREAD_TEXT if not messages and not is_loading else None,
            error_banner=self._thread.error.message if self._thread.error else None,
            composer_text=self.composer.text,
            composer_placeholder=COMPOSER_PLACEHOLDER,
            composer_disabled=self.composer.is_disabled,
            can_send=self.composer.can_submit,
            send_error=self.composer.error,
            scroll_to_bottom=scroll,
            has_new_below=self.scroll.has_new_below,
        )

    def _header(self, conversation_id: UUID) -> ThreadHeader | None:
        record = self._gateway.cache.get_conversation(conversation_id)
        if record is None:
            return None
        return ThreadHeader(
            title=record.counterpart_name or "User",
            image_url=record.pet_image_url,
            subtitle=f"About: {record.pet_name}" if record.pet_name else None,
        )

    @staticmethod
    def _bubble(message: CachedMessage, viewer_id: UUID, now: datetime) -> MessageBubble:
        is_mine = message.sender_id == viewer_id
        return MessageBubble(
            key=message.local_id,
            content=message.content,
            time_label=relative_time(min(message.created_at, now), now),
            is_mine=is_mine,
            sender_name=None if is_mine else message.sender_name,
            is_pending=message.is_pending,
        )
