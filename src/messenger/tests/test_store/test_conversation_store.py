import uuid

import pytest

from messenger.exceptions.base import InvalidInputError, NotFoundError, RepositoryError
from messenger.realtime.bus import InMemoryBus
from messenger.repositories import ConversationRepository, MessageRepository
from messenger.schemas.events import ConversationEvent, MessageEvent, conversation_topic, viewer_topic
from messenger.store.conversation_store import ConversationStore


class RecordingBus(InMemoryBus):
    """InMemoryBus that also keeps every (topic, event) it was asked to publish."""

    def __init__(self, fail: bool = False):
        super().__init__()
        self.published: list[tuple[str, object]] = []
        self.fail = fail

    async def publish(self, topic, event):
        self.published.append((topic, event))
        if self.fail:
            raise ConnectionError("bus is down")
        await super().publish(topic, event)

    def topics(self) -> list[str]:
        return [topic for topic, _ in self.published]


@pytest.fixture
def recording_bus() -> RecordingBus:
    return RecordingBus()


@pytest.fixture
def recording_store(session_factory, recording_bus) -> ConversationStore:
    return ConversationStore(session_factory, recording_bus, preview_length=10, max_message_length=50)


@pytest.mark.asyncio
class TestStartConversation:

    async def test_creates_conversation_with_first_message(self, store, alice, bob, buddy):
        """
        Behavior:
                - Alice starts a conversation with Bob about Buddy.
                - The result is Alice's view: Bob as counterpart, Buddy as context, nothing unread.
                - Bob sees the same conversation with one unread message.
        """
        result = await store.start_conversation(alice.id, bob.id, buddy.id, "  Is Buddy still available?  ")

        assert result.created is True
        conversation = result.conversation
        assert conversation.viewer_id == alice.id
        assert conversation.counterpart_id == bob.id
        assert conversation.counterpart_name == "Bob"
        assert conversation.pet_name == "Buddy"
        assert conversation.unread_count == 0
        assert conversation.last_message == "Is Buddy still available?"
        assert result.message.content == "Is Buddy still available?"
        assert result.message.sender_name == "Alice"

        [bobs_view] = await store.list_conversations(bob.id)
        assert bobs_view.id == conversation.id
        assert bobs_view.counterpart_name == "Alice"
        assert bobs_view.unread_count == 1

    async def test_reuses_conversation_for_same_pair_and_pet(self, store, alice, bob, buddy, seeded_conversation):
        again = await store.start_conversation(bob.id, alice.id, buddy.id, "Yes, he is!")

        assert again.created is False
        assert again.conversation.id == seeded_conversation.conversation.id
        messages = await store.list_messages(alice.id, again.conversation.id)
        assert [m.content for m in messages] == ["Is Buddy still available?", "Yes, he is!"]

    async def test_pet_context_separates_conversations(self, store, alice, bob, seeded_conversation):
        general = await store.start_conversation(alice.id, bob.id, None, "Hi! 👋")

        assert general.created is True
        assert general.conversation.id != seeded_conversation.conversation.id
        assert general.conversation.pet_context_id is None
        assert len(await store.list_conversations(alice.id)) == 2

    async def test_rejects_messaging_yourself(self, store, alice):
        with pytest.raises(InvalidInputError) as exc_info:
            await store.start_conversation(alice.id, alice.id, None, "hello me")

        assert exc_info.value.fields == ["recipient_id"]

    async def test_rejects_blank_message(self, store, alice, bob):
        with pytest.raises(InvalidInputError) as exc_info:
            await store.start_conversation(alice.id, bob.id, None, "   ")

        assert exc_info.value.fields == ["content"]
        assert await store.list_conversations(alice.id) == []

    async def test_unknown_recipient_or_pet_is_not_found(self, store, alice, bob):
        with pytest.raises(NotFoundError) as exc_info:
            await store.start_conversation(alice.id, uuid.uuid4(), None, "hello")
        assert exc_info.value.fields == ["recipient_id"]

        with pytest.raises(NotFoundError) as exc_info:
            await store.start_conversation(alice.id, bob.id, uuid.uuid4(), "hello")
        assert exc_info.value.fields == ["pet_context_id"]

    async def test_failed_first_message_leaves_no_conversation(self, store, alice, bob, buddy, monkeypatch):
        """
        Behavior:
                - The first message insert fails after the conversation row was flushed.
                - The whole transaction rolls back: no orphan conversation for either side.
        """
        async def broken_create_message(self, **kwargs):
            raise RepositoryError("disk full")

        monkeypatch.setattr(MessageRepository, "create_message", broken_create_message)

        with pytest.raises(RepositoryError):
            await store.start_conversation(alice.id, bob.id, buddy.id, "Is Buddy still available?")

        assert await store.list_conversations(alice.id) == []
        assert await store.list_conversations(bob.id) == []

    async def test_lost_creation_race_appends_to_winner(self, store, alice, bob, buddy, seeded_conversation, monkeypatch):
        """
        Behavior:
                - The first lookup misses a conversation another transaction just created.
                - The insert hits the unique key; the store retries and appends to the existing one.
        """
        original = ConversationRepository.find_by_key
        calls = {"n": 0}

        async def stale_then_fresh(self, *args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return await original(self, *args, **kwargs)

        monkeypatch.setattr(ConversationRepository, "find_by_key", stale_then_fresh)

        result = await store.start_conversation(bob.id, alice.id, buddy.id, "Yes!")

        assert result.created is False
        assert result.conversation.id == seeded_conversation.conversation.id
        assert calls["n"] == 2
        assert len(await store.list_conversations(alice.id)) == 1


@pytest.mark.asyncio
class TestSendMessage:

    async def test_send_appends_and_bumps_counterpart_unread(self, store, alice, bob, seeded_conversation):
        conversation_id = seeded_conversation.conversation.id

        reply = await store.send_message(bob.id, conversation_id, "He is!")
        await store.send_message(bob.id, conversation_id, "Want to meet him?")

        assert reply.sender_id == bob.id
        assert reply.sender_name == "Bob"
        messages = await store.list_messages(alice.id, conversation_id)
        assert [m.content for m in messages] == ["Is Buddy still available?", "He is!", "Want to meet him?"]
        assert [m.created_at for m in messages] == sorted(m.created_at for m in messages)

        [alices_view] = await store.list_conversations(alice.id)
        assert alices_view.unread_count == 2
        assert alices_view.last_message == "Want to meet him?"

    async def test_outsider_cannot_send_or_read(self, store, carol, seeded_conversation):
        conversation_id = seeded_conversation.conversation.id

        with pytest.raises(NotFoundError):
            await store.send_message(carol.id, conversation_id, "let me in")
        with pytest.raises(NotFoundError):
            await store.list_messages(carol.id, conversation_id)
        assert await store.can_access(carol.id, conversation_id) is False
        assert await store.list_conversations(carol.id) == []

    async def test_unknown_conversation_is_not_found(self, store, alice):
        with pytest.raises(NotFoundError):
            await store.send_message(alice.id, uuid.uuid4(), "hello")

    async def test_replayed_client_message_id_is_idempotent(self, store, alice, bob, seeded_conversation):
        """
        Behavior:
                - A send is retried with the same client_message_id.
                - The stored message is returned; nothing new is written and Bob's unread count moves once.
        """
        conversation_id = seeded_conversation.conversation.id
        client_id = uuid.uuid4()

        first = await store.send_message(alice.id, conversation_id, "Are you there?", client_id)
        second = await store.send_message(alice.id, conversation_id, "Are you there?", client_id)

        assert second.id == first.id
        assert second.client_message_id == client_id
        assert len(await store.list_messages(alice.id, conversation_id)) == 2
        [bobs_view] = await store.list_conversations(bob.id)
        assert bobs_view.unread_count == 2

    async def test_content_limits(self, recording_store, alice, bob):
        started = await recording_store.start_conversation(alice.id, bob.id, None, "hello there, Bob")
        # preview is cut to preview_length
        assert started.conversation.last_message == "hello ther"

        with pytest.raises(InvalidInputError):
            await recording_store.send_message(alice.id, started.conversation.id, "x" * 51)
        with pytest.raises(InvalidInputError):
            await recording_store.send_message(alice.id, started.conversation.id, "\n\t ")


@pytest.mark.asyncio
class TestMarkRead:

    async def test_mark_read_returns_cleared_count(self, store, bob, seeded_conversation):
        conversation_id = seeded_conversation.conversation.id

        assert await store.mark_read(bob.id, conversation_id) == 1
        assert await store.mark_read(bob.id, conversation_id) == 0
        [bobs_view] = await store.list_conversations(bob.id)
        assert bobs_view.unread_count == 0

    async def test_outsider_cannot_mark_read(self, store, carol, seeded_conversation):
        with pytest.raises(NotFoundError):
            await store.mark_read(carol.id, seeded_conversation.conversation.id)


@pytest.mark.asyncio
class TestChangeEvents:

    async def test_send_publishes_message_then_both_viewers(self, recording_store, recording_bus, alice, bob):
        started = await recording_store.start_conversation(alice.id, bob.id, None, "hi")
        conversation_id = started.conversation.id
        recording_bus.published.clear()

        message = await recording_store.send_message(bob.id, conversation_id, "hello")

        assert recording_bus.topics()[0] == conversation_topic(conversation_id)
        assert set(recording_bus.topics()[1:]) == {viewer_topic(alice.id), viewer_topic(bob.id)}

        topic, event = recording_bus.published[0]
        assert isinstance(event, MessageEvent)
        assert event.record.id == message.id

        views = {e.record.viewer_id: e.record for _, e in recording_bus.published[1:]}
        assert all(isinstance(e, ConversationEvent) for _, e in recording_bus.published[1:])
        assert views[alice.id].unread_count == 1
        assert views[bob.id].unread_count == 1  # Alice's opening message

    async def test_start_publishes_created_events(self, recording_store, recording_bus, alice, bob):
        await recording_store.start_conversation(alice.id, bob.id, None, "hi")

        operations = {e.operation for _, e in recording_bus.published if isinstance(e, ConversationEvent)}
        assert operations == {"created"}

    async def test_subscriber_receives_event_after_commit(self, recording_store, recording_bus, alice, bob):
        subscription = await recording_bus.subscribe(viewer_topic(bob.id))

        started = await recording_store.start_conversation(alice.id, bob.id, None, "hi")

        event = await subscription.__anext__()
        assert event.record.id == started.conversation.id
        # the subscriber can read what the event announces
        assert await recording_store.can_access(bob.id, event.record.id) is True
        await subscription.close()

    async def test_failed_write_publishes_nothing(self, recording_store, recording_bus, alice, carol, bob):
        started = await recording_store.start_conversation(alice.id, bob.id, None, "hi")
        recording_bus.published.clear()

        with pytest.raises(NotFoundError):
            await recording_store.send_message(carol.id, started.conversation.id, "hi")

        assert recording_bus.published == []

    async def test_replay_publishes_nothing(self, recording_store, recording_bus, alice, bob):
        started = await recording_store.start_conversation(alice.id, bob.id, None, "hi")
        client_id = uuid.uuid4()
        await recording_store.send_message(alice.id, started.conversation.id, "again", client_id)
        recording_bus.published.clear()

        await recording_store.send_message(alice.id, started.conversation.id, "again", client_id)

        assert recording_bus.published == []

    async def test_mark_read_publishes_only_on_change(self, recording_store, recording_bus, alice, bob):
        started = await recording_store.start_conversation(alice.id, bob.id, None, "hi")
        recording_bus.published.clear()

        await recording_store.mark_read(bob.id, started.conversation.id)
        await recording_store.mark_read(bob.id, started.conversation.id)

        assert recording_bus.topics() == [viewer_topic(bob.id)]
        assert recording_bus.published[0][1].record.unread_count == 0

    async def test_publish_failure_does_not_fail_committed_send(self, session_factory, alice, bob):
        store = ConversationStore(session_factory, RecordingBus(fail=True))

        started = await store.start_conversation(alice.id, bob.id, None, "hi")
        await store.send_message(alice.id, started.conversation.id, "still saved")

        messages = await store.list_messages(bob.id, started.conversation.id)
        assert [m.content for m in messages] == ["hi", "still saved"]
