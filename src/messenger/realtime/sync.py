"""
Merges realtime change events into the viewer's cache.

`RealtimeSync` owns the session's `SubscriptionManager`. Views never hold bus
subscriptions themselves; they hold leases (`watch_viewer`,
`watch_conversation`) or a `ConversationFollower` that swaps its lease as the
selected conversation changes.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable
from uuid import UUID

from messenger.gateway.cache import MessagingCache
from messenger.schemas.events import ChangeEvent, ConversationEvent, MessageEvent, conversation_topic, viewer_topic
from .bus import RealtimeBus
from .subscriptions import Lease, SubscriptionManager

logger = logging.getLogger(__name__)


class RealtimeSync:
    """
    Args:
        cache: the viewer's cache.
        bus: realtime transport.
        resync: awaited with the topic after a dropped channel came back, so
            the owner can refetch what may have been missed.
    """

    def __init__(
        self,
        cache: MessagingCache,
        bus: RealtimeBus,
        *,
        resync: Callable[[str], Awaitable[None]] | None = None,
        initial_delay: float = 0.5,
        max_delay: float = 30.0,
    ):
        self._cache = cache
        self._resync = resync
        self.subscriptions = SubscriptionManager(
            bus,
            self.apply,
            on_reconnect=self._on_reconnect,
            initial_delay=initial_delay,
            max_delay=max_delay,
        )

    def apply(self, topic: str, event: ChangeEvent) -> bool:
        """Merge one event. Returns True when the cache changed."""
        if isinstance(event, MessageEvent):
            changed = self._cache.merge_message(event.record)
        elif isinstance(event, ConversationEvent):
            if event.record.viewer_id != self._cache.viewer_id:
                logger.debug("realtime.foreign_record_ignored", extra={"topic": topic})
                return False
            changed = self._cache.merge_conversation(event.record)
        else:
            return False

        logger.debug(
            "realtime.event",
            extra={"topic": topic, "table": event.table, "operation": event.operation, "changed": changed},
        )
        return changed

    async def watch_viewer(self) -> Lease:
        return await self.subscriptions.acquire(viewer_topic(self._cache.viewer_id))

    async def watch_conversation(self, conversation_id: UUID) -> Lease:
        return await self.subscriptions.acquire(conversation_topic(conversation_id))

    def follower(self) -> "ConversationFollower":
        return ConversationFollower(self)

    async def close(self) -> None:
        await self.subscriptions.close()

    async def _on_reconnect(self, topic: str) -> None:
        if self._resync is not None:
            await self._resync(topic)


class ConversationFollower:
    """Keeps exactly one conversation lease matching the selected id."""

    def __init__(self, sync: RealtimeSync):
        self._sync = sync
        self._lease: Lease | None = None
        self._target: UUID | None = None
        self._generation = 0
        self.conversation_id: UUID | None = None

    async def follow(self, conversation_id: UUID | None) -> None:
        if conversation_id == self._target:
            return
        self._target = conversation_id
        self._generation += 1
        generation = self._generation

        lease = await self._sync.watch_conversation(conversation_id) if conversation_id else None
        if generation != self._generation:
            # A later follow() superseded this one while subscribing.
            if lease is not None:
                lease.release()
            return

        previous, self._lease = self._lease, lease
        self.conversation_id = conversation_id
        if previous is not None:
            previous.release()

    def stop(self) -> None:
        self._generation += 1
        if self._lease is not None:
            self._lease.release()
        self._lease = None
        self._target = None
        self.conversation_id = None
