"""
Query and mutation objects the views bind to.

They own request status and the last error for one concern each, and turn
client errors into presentable state. Cache writes go through the gateway.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from uuid import UUID

from messenger.exceptions.client import (
    EmptyMessageError,
    MessagingError,
    ResolveFailedError,
    SendFailedError,
    TransientFetchError,
)
from .cache import CachedMessage
from .message_gateway import MessageGateway

logger = logging.getLogger(__name__)


class QueryStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


class ConversationsQuery:
    """
    The viewer's conversation list.

    `ensure_loaded()` fetches once; concurrent callers share the same
    in-flight request. A failed fetch keeps cached rows and sets `error`.
    """

    def __init__(self, gateway: MessageGateway):
        self._gateway = gateway
        self.status = QueryStatus.IDLE
        self.error: TransientFetchError | None = None
        self._inflight: asyncio.Task | None = None

    @property
    def cache(self):
        return self._gateway.cache

    @property
    def is_loaded(self) -> bool:
        return self.cache.conversations_loaded

    @property
    def is_loading(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def ensure_loaded(self) -> None:
        if self.is_loaded:
            return
        await self.refetch()

    async def refetch(self) -> None:
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.create_task(self._fetch())
        await asyncio.wait({self._inflight})

    def dismiss_error(self) -> None:
        self.error = None

    async def _fetch(self) -> None:
        self.status = QueryStatus.LOADING
        try:
            await self._gateway.list_conversations()
        except TransientFetchError as exc:
            self.status = QueryStatus.ERROR
            self.error = exc
            logger.warning("query.conversations.failed", extra={"cached": len(self.cache.conversations())})
            return
        self.status = QueryStatus.SUCCESS
        self.error = None

    async def close(self) -> None:
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
            await asyncio.wait({self._inflight})


class ThreadQuery:
    """
    Messages of the selected conversation.

    Each `select()` bumps a generation counter. A fetch whose generation is no
    longer current when it resolves is discarded, so a slow response for a
    previously selected conversation can never replace the current thread.
    """

    def __init__(self, gateway: MessageGateway):
        self._gateway = gateway
        self.conversation_id: UUID | None = None
        self.status = QueryStatus.IDLE
        self.error: TransientFetchError | None = None
        self._generation = 0
        self._inflight: asyncio.Task | None = None

    @property
    def messages(self) -> list[CachedMessage]:
        if self.conversation_id is None:
            return []
        return self._gateway.cache.messages(self.conversation_id)

    @property
    def generation(self) -> int:
        return self._generation

    async def select(self, conversation_id: UUID | None) -> None:
        """Show `conversation_id` (None clears the thread without a store call)."""
        self._generation += 1
        self._cancel_inflight()
        self.conversation_id = conversation_id
        self.error = None

        if conversation_id is None:
            self.status = QueryStatus.IDLE
            return
        await self._load(self._generation, conversation_id)

    async def refetch(self) -> None:
        if self.conversation_id is None:
            return
        self._generation += 1
        self._cancel_inflight()
        await self._load(self._generation, self.conversation_id)

    def dismiss_error(self) -> None:
        self.error = None

    async def _load(self, generation: int, conversation_id: UUID) -> None:
        self.status = QueryStatus.LOADING
        task = asyncio.create_task(self._gateway.list_messages(conversation_id))
        self._inflight = task
        await asyncio.wait({task})

        if generation != self._generation:
            logger.debug("query.thread.stale_discarded", extra={"conversation_id": conversation_id})
            return
        self._inflight = None

        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.status = QueryStatus.ERROR
            self.error = exc if isinstance(exc, TransientFetchError) else TransientFetchError(cause=exc)
            return

        self._gateway.cache.replace_messages(conversation_id, task.result())
        self.status = QueryStatus.SUCCESS

    def _cancel_inflight(self) -> None:
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        self._inflight = None


class SendMutation:
    """Send from the composer. `send()` returns None on failure and sets `error`."""

    def __init__(self, gateway: MessageGateway):
        self._gateway = gateway
        self.error: MessagingError | None = None
        self._pending = 0

    @property
    def is_pending(self) -> bool:
        return self._pending > 0

    async def send(self, conversation_id: UUID, content: str) -> CachedMessage | None:
        self._pending += 1
        try:
            message = await self._gateway.send_message(conversation_id, content)
        except (EmptyMessageError, SendFailedError) as exc:
            self.error = exc
            return None
        finally:
            self._pending -= 1
        self.error = None
        return message

    def dismiss_error(self) -> None:
        self.error = None


class StartConversationMutation:
    """Open (or reuse) a conversation. `start()` returns None on failure."""

    def __init__(self, gateway: MessageGateway):
        self._gateway = gateway
        self.error: MessagingError | None = None
        self._pending = 0

    @property
    def is_pending(self) -> bool:
        return self._pending > 0

    async def start(
        self, recipient_id: UUID, pet_context_id: UUID | None, initial_message: str
    ) -> UUID | None:
        self._pending += 1
        try:
            conversation_id = await self._gateway.start_conversation(
                recipient_id, pet_context_id, initial_message
            )
        except (EmptyMessageError, ResolveFailedError) as exc:
            self.error = exc
            logger.warning("mutation.start.failed", extra={"recipient_id": recipient_id, "reason": exc.message})
            return None
        finally:
            self._pending -= 1
        self.error = None
        return conversation_id

    def dismiss_error(self) -> None:
        self.error = None
