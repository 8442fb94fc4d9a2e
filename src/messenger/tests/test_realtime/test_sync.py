import asyncio
import uuid

import pytest

from messenger.gateway.cache import CachedMessage
from messenger.realtime.sync import RealtimeSync
from messenger.schemas.events import ConversationEvent, MessageEvent, conversation_topic, viewer_topic
from messenger.tests.test_fixtures.client_fixtures import (
    BASE_TIME,
    conversation_record,
    message_record,
    wait_until,
)


@pytest.fixture
async def sync(cache, bus):
    resynced: list[str] = []

    async def resync(topic):
        resynced.append(topic)

    sync = RealtimeSync(cache, bus, resync=resync, initial_delay=0.01, max_delay=0.05)
    sync.resynced = resynced
    yield sync
    await sync.close()


@pytest.mark.asyncio
class TestApply:

    async def test_message_event_merges_once(self, sync, cache, viewer_id, counterpart_id):
        conversation_id = uuid.uuid4()
        event = MessageEvent(record=message_record(conversation_id, counterpart_id, "hi"))

        assert sync.apply(conversation_topic(conversation_id), event) is True
        assert sync.apply(conversation_topic(conversation_id), event) is False
        assert [m.content for m in cache.messages(conversation_id)] == ["hi"]

    async def test_message_event_confirms_matching_pending_entry(self, sync, cache, viewer_id):
        conversation_id = uuid.uuid4()
        pending = CachedMessage.pending(conversation_id, viewer_id, "on my way")
        cache.add_pending(pending)
        record = message_record(
            conversation_id, viewer_id, "on my way", client_message_id=pending.client_message_id
        )

        assert sync.apply(conversation_topic(conversation_id), MessageEvent(record=record)) is True

        [entry] = cache.messages(conversation_id)
        assert entry.local_id == pending.local_id
        assert entry.id == record.id
        assert not entry.is_pending

    async def test_conversation_event_for_another_viewer_is_ignored(self, sync, cache, counterpart_id):
        foreign = conversation_record(counterpart_id, uuid.uuid4())
        event = ConversationEvent(operation="created", record=foreign)

        assert sync.apply(viewer_topic(counterpart_id), event) is False
        assert cache.conversations() == []

    async def test_conversation_event_merges(self, sync, cache, viewer_id, counterpart_id):
        record = conversation_record(viewer_id, counterpart_id, last_message="hi", last_message_at=BASE_TIME)

        assert sync.apply(viewer_topic(viewer_id), ConversationEvent(operation="created", record=record))
        assert cache.get_conversation(record.id) == record


@pytest.mark.asyncio
class TestWatching:

    async def test_viewer_feed_updates_cache(self, sync, cache, bus, viewer_id, counterpart_id):
        lease = await sync.watch_viewer()
        record = conversation_record(viewer_id, counterpart_id, unread_count=1, last_message_at=BASE_TIME)

        await bus.publish(viewer_topic(viewer_id), ConversationEvent(operation="created", record=record))

        await wait_until(lambda: cache.total_unread() == 1)
        lease.release()

    async def test_reconnect_triggers_resync(self, sync, bus, viewer_id):
        lease = await sync.watch_viewer()

        bus.disconnect(viewer_topic(viewer_id))

        await wait_until(lambda: sync.resynced == [viewer_topic(viewer_id)])
        lease.release()


@pytest.mark.asyncio
class TestConversationFollower:

    async def test_follow_swaps_leases(self, sync):
        first, second = uuid.uuid4(), uuid.uuid4()
        follower = sync.follower()

        await follower.follow(first)
        assert sync.subscriptions.refcount(conversation_topic(first)) == 1

        await follower.follow(second)
        assert sync.subscriptions.refcount(conversation_topic(first)) == 0
        assert sync.subscriptions.refcount(conversation_topic(second)) == 1
        assert follower.conversation_id == second

        await follower.follow(None)
        assert sync.subscriptions.active_topics() == set()

    async def test_following_same_conversation_twice_keeps_one_lease(self, sync):
        target = uuid.uuid4()
        follower = sync.follower()

        await follower.follow(target)
        await follower.follow(target)

        assert sync.subscriptions.refcount(conversation_topic(target)) == 1

    async def test_rapid_switching_keeps_only_the_latest(self, sync):
        """
        Behavior:
                - Two follow() calls overlap: the first is still subscribing when the second starts.
                - Only the latest conversation keeps a lease.
        """
        first, second = uuid.uuid4(), uuid.uuid4()
        follower = sync.follower()

        await asyncio.gather(follower.follow(first), follower.follow(second))

        assert follower.conversation_id == second
        assert sync.subscriptions.active_topics() == {conversation_topic(second)}

    async def test_two_followers_share_a_topic(self, sync, bus):
        target = uuid.uuid4()
        widget, inbox = sync.follower(), sync.follower()

        await widget.follow(target)
        await inbox.follow(target)
        assert bus.subscriber_count(conversation_topic(target)) == 1

        widget.stop()
        assert sync.subscriptions.refcount(conversation_topic(target)) == 1
        inbox.stop()
        assert sync.subscriptions.refcount(conversation_topic(target)) == 0
