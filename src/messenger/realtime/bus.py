"""
Realtime change-feed transport.

A bus carries change events on named topics (`conversation:{id}`,
`viewer:{user_id}`). `subscribe()` returns an async-iterable subscription;
iteration raises `RealtimeDisconnected` when the underlying channel drops,
which the subscription manager answers by resubscribing.

Two implementations:
  - InMemoryBus: asyncio queues, one process. Default for development and tests.
  - RedisBus: redis.asyncio pub/sub, events serialized as JSON.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Protocol

import redis.asyncio as redis
from pydantic import ValidationError
from redis.exceptions import ConnectionError as RedisConnectionError, TimeoutError as RedisTimeoutError

from messenger.config.settings import Settings
from messenger.exceptions.client import RealtimeDisconnected
from messenger.schemas.events import ChangeEvent, dump_change_event, parse_change_event

logger = logging.getLogger(__name__)


class Subscription(Protocol):
    topic: str

    def __aiter__(self) -> AsyncIterator[ChangeEvent]: ...

    async def __anext__(self) -> ChangeEvent: ...

    async def close(self) -> None: ...


class RealtimeBus(Protocol):
    async def publish(self, topic: str, event: ChangeEvent) -> None: ...

    async def subscribe(self, topic: str) -> Subscription: ...

    async def close(self) -> None: ...


# =================================================================================================================
# In-memory bus
# =================================================================================================================

_CLOSED = object()
_DISCONNECTED = object()


class _MemorySubscription:
    def __init__(self, bus: "InMemoryBus", topic: str):
        self.topic = topic
        self._bus = bus
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def __aiter__(self) -> "_MemorySubscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if item is _DISCONNECTED:
            raise RealtimeDisconnected(f"channel {self.topic} dropped")
        return item

    def _deliver(self, item) -> None:
        self._queue.put_nowait(item)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._bus._detach(self)
        self._queue.put_nowait(_CLOSED)


class InMemoryBus:
    """Process-local bus. Each subscription gets its own unbounded queue."""

    def __init__(self) -> None:
        self._subscribers: dict[str, set[_MemorySubscription]] = {}

    async def publish(self, topic: str, event: ChangeEvent) -> None:
        subscribers = list(self._subscribers.get(topic, ()))
        logger.debug("bus.publish", extra={"topic": topic, "subscribers": len(subscribers)})
        for sub in subscribers:
            sub._deliver(event)

    async def subscribe(self, topic: str) -> _MemorySubscription:
        sub = _MemorySubscription(self, topic)
        self._subscribers.setdefault(topic, set()).add(sub)
        return sub

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    def disconnect(self, topic: str) -> None:
        """Drop every live subscription on `topic` as a broken channel would."""
        for sub in list(self._subscribers.pop(topic, ())):
            sub._closed = True
            sub._deliver(_DISCONNECTED)

    def _detach(self, sub: _MemorySubscription) -> None:
        subs = self._subscribers.get(sub.topic)
        if subs is None:
            return
        subs.discard(sub)
        if not subs:
            del self._subscribers[sub.topic]

    async def close(self) -> None:
        for topic in list(self._subscribers):
            for sub in list(self._subscribers.get(topic, ())):
                await sub.close()


# =================================================================================================================
# Redis bus
# =================================================================================================================

class _RedisSubscription:
    def __init__(self, pubsub, topic: str, poll_timeout: float = 1.0):
        self.topic = topic
        self._pubsub = pubsub
        self._poll_timeout = poll_timeout
        self._closed = False

    def __aiter__(self) -> "_RedisSubscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        while not self._closed:
            try:
                msg = await self._pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=self._poll_timeout
                )
            except (RedisConnectionError, RedisTimeoutError) as exc:
                raise RealtimeDisconnected(f"channel {self.topic} dropped", cause=exc) from exc

            if not msg or msg.get("type") != "message":
                continue

            data = msg.get("data")
            try:
                return parse_change_event(data)
            except ValidationError:
                logger.warning("bus.redis.invalid_payload", extra={"topic": self.topic})
        raise StopAsyncIteration

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._pubsub.unsubscribe(self.topic)
            await self._pubsub.aclose()
        except (RedisConnectionError, RedisTimeoutError):
            logger.debug("bus.redis.close_on_dead_connection", extra={"topic": self.topic})


class RedisBus:
    """
    Redis pub/sub bus.

    Args:
        url: Redis URL; ignored when `client` is given.
        client: an existing `redis.asyncio.Redis` (or fakeredis) client.
    """

    def __init__(self, url: str | None = None, *, client: redis.Redis | None = None,
                 poll_timeout: float = 1.0):
        if client is None and not url:
            raise ValueError("RedisBus needs a url or a client")
        self._redis = client if client is not None else redis.from_url(url)
        self._poll_timeout = poll_timeout

    async def publish(self, topic: str, event: ChangeEvent) -> None:
        receivers = await self._redis.publish(topic, dump_change_event(event))
        logger.debug("bus.publish", extra={"topic": topic, "subscribers": receivers})

    async def subscribe(self, topic: str) -> _RedisSubscription:
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(topic)
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise RealtimeDisconnected(f"cannot subscribe to {topic}", cause=exc) from exc
        return _RedisSubscription(pubsub, topic, poll_timeout=self._poll_timeout)

    async def close(self) -> None:
        await self._redis.aclose()


def get_bus(settings: Settings) -> RealtimeBus:
    """Build the bus selected by REALTIME_BACKEND."""
    if settings.REALTIME_BACKEND == "redis":
        if not settings.REDIS_URL:
            logger.warning("bus.redis_url_missing.falling_back_to_memory")
            return InMemoryBus()
        return RedisBus(settings.REDIS_URL)
    return InMemoryBus()
