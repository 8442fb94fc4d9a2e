"""
Messaging surfaces: the floating widget and the inbox page.

Both surfaces hang off one `MessagingSession`, which owns everything shared
per viewer: the cache, the gateway, the conversations query and the realtime
sync (and through it the single, ref-counted set of bus subscriptions). Each
surface owns only its selection, thread query, composer and a conversation
follower.

A session without a signed-in viewer mounts nothing: surfaces render None and
issue no store calls.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from uuid import UUID

from messenger.config.settings import Settings, get_settings
from messenger.exceptions.client import NotAuthenticatedError
from messenger.gateway.cache import MessagingCache
from messenger.gateway.message_gateway import MessageGateway
from messenger.gateway.queries import ConversationsQuery, SendMutation, StartConversationMutation, ThreadQuery
from messenger.realtime.bus import RealtimeBus
from messenger.realtime.subscriptions import Lease
from messenger.realtime.sync import RealtimeSync
from messenger.session import SessionProvider
from messenger.signals import OpenChatBroker, OpenChatRequest
from messenger.store.protocol import ConversationStoreProtocol
from .conversation_list import ConversationListModel, ConversationListView
from .formatting import badge_text
from .message_thread import Composer, MessageThreadView, ThreadModel

logger = logging.getLogger(__name__)

NO_SELECTION_TITLE = "Select a conversation"
NO_SELECTION_BODY = "Choose a conversation from the sidebar to start chatting"
WIDGET_ROUTE_PREFIXES = ("/community", "/pet/")
WIDGET_HIDDEN_PREFIXES = ("/admin", "/messages")


def open_chat_greeting(display_hint: str | None) -> str:
    if display_hint:
        return f"Hi! 🐾 Asking about {display_hint}"
    return "Hi! 👋"


@dataclass
class ViewerContext:
    """Per-viewer objects shared by every mounted surface."""

    viewer_id: UUID
    cache: MessagingCache
    gateway: MessageGateway
    conversations: ConversationsQuery
    sync: RealtimeSync


class MessagingSession:
    """
    Composition root for client-side messaging.

    Args:
        store: the conversation store.
        bus: realtime transport.
        session: who is signed in.
        settings: timeouts, preview length, retry and poll intervals.
        tz: the viewer's time zone for day grouping.
    """

    def __init__(
        self,
        store: ConversationStoreProtocol,
        bus: RealtimeBus,
        session: SessionProvider,
        settings: Settings | None = None,
        *,
        tz: tzinfo = timezone.utc,
    ):
        self._store = store
        self._bus = bus
        self._session = session
        self.settings = settings or get_settings()
        self.tz = tz
        self.broker: OpenChatBroker[UUID | None] = OpenChatBroker()
        self.context: ViewerContext | None = None
        self._mounted: list[MessagingSurface] = []
        self._viewer_lease: Lease | None = None
        self._poller: asyncio.Task | None = None

    @property
    def viewer_id(self) -> UUID | None:
        return self._session.viewer_id

    @property
    def mounted_surfaces(self) -> int:
        return len(self._mounted)

    async def attach(self, surface: "MessagingSurface") -> ViewerContext | None:
        """Register a mounted surface. Returns None when nobody is signed in."""
        viewer_id = self._session.viewer_id
        if viewer_id is None:
            logger.debug("messaging.attach.unauthenticated")
            return None

        if self.context is not None and self.context.viewer_id != viewer_id:
            await self._drop_context()
        if self.context is None:
            self.context = self._build_context(viewer_id)

        first = not self._mounted
        if surface not in self._mounted:
            self._mounted.append(surface)
        if first:
            self._viewer_lease = await self.context.sync.watch_viewer()
            self._start_poller()

        await self.context.conversations.ensure_loaded()
        return self.context

    async def detach(self, surface: "MessagingSurface") -> None:
        if surface in self._mounted:
            self._mounted.remove(surface)
        if self._mounted:
            return
        if self._viewer_lease is not None:
            self._viewer_lease.release()
            self._viewer_lease = None
        await self._stop_poller()

    async def open_chat(self, request: OpenChatRequest) -> UUID | None:
        """
        Ask the widget to open a chat. Queued until a widget is mounted.

        Raises:
            NotAuthenticatedError: nobody is signed in.
        """
        if self._session.viewer_id is None:
            raise NotAuthenticatedError()
        return await self.broker.publish(request)

    async def close(self) -> None:
        for surface in list(self._mounted):
            await surface.unmount()
        await self._drop_context()

    # =================================================================================================================
    # Internals
    # =================================================================================================================

    def _build_context(self, viewer_id: UUID) -> ViewerContext:
        cache = MessagingCache(viewer_id)
        gateway = MessageGateway(
            self._store,
            cache,
            timeout=self.settings.FETCH_TIMEOUT_SECONDS,
            preview_length=self.settings.MESSAGE_PREVIEW_LENGTH,
        )
        sync = RealtimeSync(
            cache,
            self._bus,
            resync=self._resync,
            initial_delay=self.settings.REALTIME_RETRY_INITIAL_DELAY,
            max_delay=self.settings.REALTIME_RETRY_MAX_DELAY,
        )
        logger.info("messaging.context.created", extra={"viewer_id": viewer_id})
        return ViewerContext(viewer_id, cache, gateway, ConversationsQuery(gateway), sync)

    async def _drop_context(self) -> None:
        await self._stop_poller()
        if self._viewer_lease is not None:
            self._viewer_lease.release()
            self._viewer_lease = None
        if self.context is not None:
            await self.context.conversations.close()
            await self.context.sync.close()
            self.context = None

    async def _resync(self, topic: str) -> None:
        """Refetch whatever a dropped channel may have missed."""
        if self.context is None:
            return
        kind, _, ident = topic.partition(":")
        if kind == "viewer":
            await self.context.conversations.refetch()
            return
        for surface in list(self._mounted):
            if surface.thread is not None and str(surface.thread.conversation_id) == ident:
                await surface.thread.refetch()

    def _start_poller(self) -> None:
        interval = self.settings.UNREAD_POLL_INTERVAL_SECONDS
        if interval <= 0 or self._poller is not None:
            return
        self._poller = asyncio.create_task(self._poll(interval), name="messaging:unread-poll")

    async def _stop_poller(self) -> None:
        if self._poller is None:
            return
        self._poller.cancel()
        await asyncio.wait({self._poller})
        self._poller = None

    async def _poll(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            if self.context is not None:
                await self.context.conversations.refetch()


class MessagingSurface:
    """Shared behaviour of the widget and the inbox page."""

    def __init__(self, session: MessagingSession):
        self._session = session
        self.context: ViewerContext | None = None
        self.thread: ThreadQuery | None = None
        self.list_view: ConversationListView | None = None
        self.thread_view: MessageThreadView | None = None
        self._follower = None
        self._selection = 0

    @property
    def is_mounted(self) -> bool:
        return self.context is not None

    @property
    def selected_id(self) -> UUID | None:
        return self.thread.conversation_id if self.thread is not None else None

    async def mount(self) -> bool:
        """Attach to the session. False (and nothing fetched) when signed out."""
        context = await self._session.attach(self)
        if context is None:
            return False

        self.context = context
        self.thread = ThreadQuery(context.gateway)
        self.list_view = ConversationListView(context.conversations, context.gateway)
        self.thread_view = MessageThreadView(
            self.thread,
            context.gateway,
            Composer(SendMutation(context.gateway)),
            tz=self._session.tz,
            near_bottom_px=self._session.settings.AUTO_SCROLL_NEAR_BOTTOM_PX,
        )
        self._follower = context.sync.follower()
        return True

    async def unmount(self) -> None:
        self._selection += 1
        if self._follower is not None:
            self._follower.stop()
        if self.thread is not None:
            await self.thread.select(None)
        self.context = None
        await self._session.detach(self)

    async def select(self, conversation_id: UUID | None) -> None:
        """
        Show a conversation, or the list when `conversation_id` is None.

        The unread count is cleared before the first suspension point.
        A later call supersedes one still waiting on its subscription.
        """
        if not self.is_mounted:
            return
        self._selection += 1
        generation = self._selection
        if conversation_id is None:
            self.list_view.clear_selection()
            await self._follower.follow(None)
            if generation == self._selection:
                await self.thread.select(None)
            return

        gateway = self.context.gateway
        previous = self.list_view.mark_selected(conversation_id)
        await self._follower.follow(conversation_id)
        if generation == self._selection:
            await self.thread.select(conversation_id)
        await gateway.acknowledge_read(conversation_id, previous)

    async def send(self, text: str) -> bool:
        if not self.is_mounted:
            return False
        self.thread_view.composer.set_text(text)
        return await self.thread_view.send()

    def render_list(self, now: datetime | None = None) -> ConversationListModel | None:
        return self.list_view.render(now) if self.is_mounted else None

    def render_thread(self, now: datetime | None = None, *, distance_from_bottom: float = 0.0) -> ThreadModel | None:
        if not self.is_mounted:
            return None
        return self.thread_view.render(now, distance_from_bottom=distance_from_bottom)


@dataclass(frozen=True)
class WidgetModel:
    is_open: bool
    title: str
    unread_badge: str | None
    conversations: ConversationListModel | None
    thread: ThreadModel | None
    error_banner: str | None


class FloatingWidget(MessagingSurface):
    """
    Pop-out chat window with a launcher button. Consumes open-chat requests.
    """

    def __init__(self, session: MessagingSession):
        super().__init__(session)
        self.is_open = False
        self.start: StartConversationMutation | None = None

    @staticmethod
    def shown_on(path: str) -> bool:
        """Routes the widget appears on; the inbox and admin pages have their own UI."""
        if path.startswith(WIDGET_HIDDEN_PREFIXES):
            return False
        return path.startswith(WIDGET_ROUTE_PREFIXES)

    async def mount(self) -> bool:
        if not await super().mount():
            return False
        self.start = StartConversationMutation(self.context.gateway)
        await self._session.broker.attach(self.handle_open_chat)
        return True

    async def unmount(self) -> None:
        self._session.broker.detach(self.handle_open_chat)
        await super().unmount()

    def open(self) -> None:
        self.is_open = True

    def minimize(self) -> None:
        self.is_open = False

    async def back(self) -> None:
        await self.select(None)

    @property
    def unread_total(self) -> int:
        return self.context.cache.total_unread() if self.is_mounted else 0

    async def handle_open_chat(self, request: OpenChatRequest) -> UUID | None:
        """
        Open the widget on a conversation with `request.recipient_id`.

        A loaded conversation is reused: the one about the same pet, or, when
        the request names no pet, any conversation with that person. Otherwise
        a conversation is started with a greeting.
        """
        if not self.is_mounted:
            return None
        self.is_open = True
        await self.context.conversations.ensure_loaded()

        existing = self.context.cache.find_conversation(
            request.recipient_id,
            request.pet_context_id,
            any_pet=request.pet_context_id is None,
        )
        if existing is not None:
            await self.select(existing.id)
            return existing.id

        conversation_id = await self.start.start(
            request.recipient_id, request.pet_context_id, open_chat_greeting(request.display_hint)
        )
        if conversation_id is not None:
            await self.select(conversation_id)
        return conversation_id

    def render(self, now: datetime | None = None) -> WidgetModel | None:
        if not self.is_mounted:
            return None
        badge = None if self.is_open else badge_text(self.unread_total)
        if not self.is_open:
            return WidgetModel(False, "Messages", badge, None, None, None)

        error = self.start.error.message if self.start.error else None
        if self.selected_id is None:
            return WidgetModel(True, "Messages", badge, self.render_list(now), None, error)
        return WidgetModel(True, "Chat", badge, None, self.render_thread(now), error)


@dataclass(frozen=True)
class InboxModel:
    conversations: ConversationListModel
    thread: ThreadModel | None
    placeholder_title: str | None
    placeholder_body: str | None
    show_thread: bool


class InboxPage(MessagingSurface):
    """Full-page inbox: list beside thread, or one at a time on narrow layouts."""

    def __init__(self, session: MessagingSession):
        super().__init__(session)
        self.show_thread = False

    async def select(self, conversation_id: UUID | None) -> None:
        self.show_thread = conversation_id is not None
        await super().select(conversation_id)

    def back(self) -> None:
        """Narrow layouts: return to the list, keeping the selection."""
        self.show_thread = False

    def render(self, now: datetime | None = None) -> InboxModel | None:
        if not self.is_mounted:
            return None
        thread = self.render_thread(now)
        return InboxModel(
            conversations=self.render_list(now),
            thread=thread,
            placeholder_title=NO_SELECTION_TITLE if thread is None else None,
            placeholder_body=NO_SELECTION_BODY if thread is None else None,
            show_thread=self.show_thread,
        )
