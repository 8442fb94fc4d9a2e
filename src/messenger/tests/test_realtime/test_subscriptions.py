import asyncio
import uuid

import pytest

from messenger.exceptions.client import RealtimeDisconnected
from messenger.realtime.bus import InMemoryBus
from messenger.realtime.subscriptions import SubscriptionManager
from messenger.schemas.events import MessageEvent
from messenger.tests.test_fixtures.client_fixtures import HeldBus, message_record, wait_until

TOPIC = "conversation:abc"


def make_event(content: str = "hello") -> MessageEvent:
    return MessageEvent(record=message_record(uuid.uuid4(), uuid.uuid4(), content))


class Recorder:
    def __init__(self):
        self.events: list[tuple[str, MessageEvent]] = []
        self.resynced: list[str] = []

    def dispatch(self, topic, event):
        self.events.append((topic, event))

    async def on_reconnect(self, topic):
        self.resynced.append(topic)


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
async def manager(bus, recorder):
    manager = SubscriptionManager(
        bus, recorder.dispatch, on_reconnect=recorder.on_reconnect, initial_delay=0.01, max_delay=0.05
    )
    yield manager
    await manager.close()


@pytest.mark.asyncio
class TestReferenceCounting:

    async def test_two_leases_share_one_bus_subscription(self, manager, bus, recorder):
        """
        Behavior:
                - Two views acquire the same topic.
                - The bus sees one subscriber and each event is dispatched once.
        """
        first = await manager.acquire(TOPIC)
        second = await manager.acquire(TOPIC)

        assert manager.refcount(TOPIC) == 2
        assert bus.subscriber_count(TOPIC) == 1

        await bus.publish(TOPIC, make_event())
        await wait_until(lambda: len(recorder.events) == 1)
        await asyncio.sleep(0.02)
        assert len(recorder.events) == 1

        first.release()
        second.release()

    async def test_subscription_lives_until_last_release(self, manager, bus):
        first = await manager.acquire(TOPIC)
        second = await manager.acquire(TOPIC)

        first.release()
        first.release()  # idempotent
        assert manager.refcount(TOPIC) == 1
        assert TOPIC in manager.active_topics()

        second.release()
        assert manager.refcount(TOPIC) == 0
        assert manager.active_topics() == set()
        await wait_until(lambda: bus.subscriber_count(TOPIC) == 0)

    async def test_acquire_after_close_raises(self, manager):
        await manager.close()
        with pytest.raises(RuntimeError):
            await manager.acquire(TOPIC)

    async def test_cancelled_acquire_releases_its_interest(self, recorder):
        """
        Behavior:
                - A caller is cancelled while its first subscription is still pending.
                - The manager forgets the topic instead of keeping a channel nobody holds.
        Importance:
                A leaked reference keeps a bus subscription open for the session's lifetime.
        """
        # Arrange
        held = HeldBus(TOPIC)
        manager = SubscriptionManager(held, recorder.dispatch, initial_delay=0.01)
        pending = asyncio.create_task(manager.acquire(TOPIC))
        await wait_until(lambda: held.waiting == [TOPIC])

        # Act
        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending

        # Assert
        assert manager.refcount(TOPIC) == 0
        assert TOPIC not in manager.active_topics()
        held.hold.set()
        await asyncio.sleep(0.02)
        assert held.subscriber_count(TOPIC) == 0

        await manager.close()
        await held.close()


@pytest.mark.asyncio
class TestReconnect:

    async def test_dropped_channel_resubscribes_and_resyncs(self, manager, bus, recorder):
        """
        Behavior:
                - The channel drops while a lease is held.
                - The manager resubscribes after a backoff, counts the reconnect
                  and asks the owner to resync that topic.
                - Events published afterwards are delivered again.
        """
        lease = await manager.acquire(TOPIC)
        assert manager.is_connected(TOPIC)

        bus.disconnect(TOPIC)

        await wait_until(lambda: manager.reconnect_count(TOPIC) == 1)
        await wait_until(lambda: recorder.resynced == [TOPIC])
        assert manager.is_connected(TOPIC)
        assert bus.subscriber_count(TOPIC) == 1

        await bus.publish(TOPIC, make_event("after reconnect"))
        await wait_until(lambda: len(recorder.events) == 1)
        assert recorder.events[0][1].record.content == "after reconnect"
        lease.release()

    async def test_failed_first_subscribe_is_retried(self, recorder):
        class FlakyBus(InMemoryBus):
            def __init__(self):
                super().__init__()
                self.attempts = 0

            async def subscribe(self, topic):
                self.attempts += 1
                if self.attempts == 1:
                    raise RealtimeDisconnected("redis unavailable")
                return await super().subscribe(topic)

        flaky = FlakyBus()
        manager = SubscriptionManager(flaky, recorder.dispatch, initial_delay=0.01)

        lease = await manager.acquire(TOPIC)
        # acquire returns after the first attempt even though it failed
        await wait_until(lambda: manager.is_connected(TOPIC))
        assert flaky.attempts == 2
        assert manager.reconnect_count(TOPIC) == 0

        lease.release()
        await manager.close()

    async def test_dispatch_errors_do_not_stop_the_feed(self, bus):
        seen = []

        def dispatch(topic, event):
            seen.append(event.record.content)
            if event.record.content == "bad":
                raise ValueError("cannot merge")

        manager = SubscriptionManager(bus, dispatch)
        lease = await manager.acquire(TOPIC)

        await bus.publish(TOPIC, make_event("bad"))
        await bus.publish(TOPIC, make_event("good"))

        await wait_until(lambda: seen == ["bad", "good"])
        lease.release()
        await manager.close()
