"""
Open-chat requests.

Any part of the app (a pet detail page, a profile card) can ask the floating
widget to open a chat with someone. Requests go through an `OpenChatBroker`
with a single consumer; requests published before the widget attaches are
queued and handed over, each exactly once, when it does.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar
from uuid import UUID

logger = logging.getLogger(__name__)

R = TypeVar("R")


@dataclass(frozen=True)
class OpenChatRequest:
    recipient_id: UUID
    pet_context_id: UUID | None = None
    display_hint: str | None = None


Handler = Callable[[OpenChatRequest], Awaitable[R]]


class OpenChatBroker(Generic[R]):
    def __init__(self) -> None:
        self._handler: Handler | None = None
        self._queue: deque[OpenChatRequest] = deque()

    @property
    def has_consumer(self) -> bool:
        return self._handler is not None

    @property
    def pending(self) -> int:
        return len(self._queue)

    async def attach(self, handler: Handler) -> list[R]:
        """
        Become the consumer and drain queued requests in order.

        Raises:
            RuntimeError: another consumer is attached.
        """
        if self._handler is not None and self._handler != handler:
            raise RuntimeError("an open-chat consumer is already attached")
        self._handler = handler

        results = []
        while self._queue and self._handler is handler:
            request = self._queue.popleft()
            results.append(await handler(request))
        return results

    def detach(self, handler: Handler) -> None:
        if self._handler == handler:
            self._handler = None

    async def publish(self, request: OpenChatRequest) -> R | None:
        """Deliver now if a consumer is attached, otherwise queue. Returns the handler's result."""
        if self._handler is None:
            self._queue.append(request)
            logger.info("open_chat.queued", extra={"recipient_id": request.recipient_id, "queued": len(self._queue)})
            return None
        return await self._handler(request)
