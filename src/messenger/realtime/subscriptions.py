"""
Session-scoped, reference-counted realtime subscriptions.

Any number of views may be interested in the same topic (both messaging
surfaces showing the same conversation, or both needing the viewer's
conversation feed). The manager keeps exactly one bus subscription per topic
and one pump task that feeds it into a dispatch callback. The subscription is
torn down when the last lease on the topic is released.

When the channel drops, the pump resubscribes with exponential backoff and
invokes `on_reconnect(topic)` so the owner can refetch what it may have
missed. The cache is left untouched while disconnected.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from messenger.exceptions.client import RealtimeDisconnected
from messenger.schemas.events import ChangeEvent
from .bus import RealtimeBus

logger = logging.getLogger(__name__)

Dispatch = Callable[[str, ChangeEvent], None]
Reconnect = Callable[[str], Awaitable[None]]


class Lease:
    """
    One view's interest in a topic. `release()` is idempotent.
    """

    def __init__(self, manager: "SubscriptionManager", topic: str):
        self.topic = topic
        self._manager = manager
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._manager._release(self.topic)

    def __repr__(self) -> str:
        return f"<Lease(topic={self.topic!r}, released={self._released})>"


@dataclass
class _Channel:
    topic: str
    refcount: int = 0
    task: asyncio.Task | None = None
    ready: asyncio.Event = field(default_factory=asyncio.Event)
    connected: bool = False
    reconnects: int = 0


class SubscriptionManager:
    """
    Args:
        bus: the realtime bus.
        dispatch: called synchronously for every delivered event.
        on_reconnect: awaited after a dropped channel has been resubscribed.
        initial_delay / max_delay: backoff bounds in seconds.
    """

    def __init__(
        self,
        bus: RealtimeBus,
        dispatch: Dispatch,
        *,
        on_reconnect: Reconnect | None = None,
        initial_delay: float = 0.5,
        max_delay: float = 30.0,
    ):
        self._bus = bus
        self._dispatch = dispatch
        self._on_reconnect = on_reconnect
        self._initial_delay = initial_delay
        self._max_delay = max_delay
        self._channels: dict[str, _Channel] = {}
        self._closed = False

    # =================================================================================================================
    # Public API
    # =================================================================================================================

    async def acquire(self, topic: str) -> Lease:
        """
        Register interest in `topic`, subscribing on first interest.

        Returns once the first subscription attempt has finished (successfully
        or not) so events published afterwards are not missed on a healthy bus.
        """
        if self._closed:
            raise RuntimeError("SubscriptionManager is closed")

        channel = self._channels.get(topic)
        if channel is None:
            channel = _Channel(topic=topic)
            self._channels[topic] = channel
            channel.task = asyncio.create_task(self._pump(channel), name=f"realtime:{topic}")
            logger.info("realtime.subscribe", extra={"topic": topic})
        channel.refcount += 1

        try:
            await channel.ready.wait()
        except asyncio.CancelledError:
            if self._channels.get(topic) is channel:
                self._release(topic)
            raise
        return Lease(self, topic)

    def refcount(self, topic: str) -> int:
        channel = self._channels.get(topic)
        return channel.refcount if channel else 0

    def active_topics(self) -> set[str]:
        return set(self._channels)

    def is_connected(self, topic: str) -> bool:
        channel = self._channels.get(topic)
        return bool(channel and channel.connected)

    def reconnect_count(self, topic: str) -> int:
        channel = self._channels.get(topic)
        return channel.reconnects if channel else 0

    async def close(self) -> None:
        """Cancel every pump and wait for their subscriptions to close."""
        self._closed = True
        tasks = [c.task for c in self._channels.values() if c.task is not None]
        self._channels.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # =================================================================================================================
    # Internals
    # =================================================================================================================

    def _release(self, topic: str) -> None:
        channel = self._channels.get(topic)
        if channel is None:
            return
        channel.refcount -= 1
        if channel.refcount > 0:
            return

        del self._channels[topic]
        if channel.task is not None:
            channel.task.cancel()
        logger.info("realtime.unsubscribe", extra={"topic": topic})

    def _next_delay(self, delay: float) -> float:
        return min(delay * 2, self._max_delay)

    async def _pump(self, channel: _Channel) -> None:
        delay = self._initial_delay
        first = True
        try:
            while True:
                try:
                    subscription = await self._bus.subscribe(channel.topic)
                except RealtimeDisconnected:
                    logger.warning(
                        "realtime.subscribe_failed", extra={"topic": channel.topic, "retry_in": delay}
                    )
                    channel.ready.set()
                    await asyncio.sleep(delay)
                    delay = self._next_delay(delay)
                    continue

                channel.connected = True
                channel.ready.set()
                if not first:
                    channel.reconnects += 1
                    logger.info("realtime.resubscribed", extra={"topic": channel.topic})
                    await self._resync(channel.topic)
                first = False
                delay = self._initial_delay

                try:
                    async for event in subscription:
                        self._deliver(channel.topic, event)
                    return
                except RealtimeDisconnected:
                    channel.connected = False
                    logger.warning("realtime.disconnected", extra={"topic": channel.topic, "retry_in": delay})
                finally:
                    await subscription.close()

                await asyncio.sleep(delay)
                delay = self._next_delay(delay)
        finally:
            channel.connected = False

    def _deliver(self, topic: str, event: ChangeEvent) -> None:
        try:
            self._dispatch(topic, event)
        except Exception:
            # One malformed event must not stop the feed.
            logger.exception("realtime.dispatch_failed", extra={"topic": topic, "table": event.table})

    async def _resync(self, topic: str) -> None:
        if self._on_reconnect is None:
            return
        try:
            await self._on_reconnect(topic)
        except Exception:
            logger.exception("realtime.resync_failed", extra={"topic": topic})
