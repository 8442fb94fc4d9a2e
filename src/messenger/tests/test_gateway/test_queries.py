import asyncio

import pytest

from messenger.exceptions.base import NotFoundError
from messenger.exceptions.client import EmptyMessageError, ResolveFailedError, TransientFetchError
from messenger.gateway.queries import (
    ConversationsQuery,
    QueryStatus,
    SendMutation,
    StartConversationMutation,
    ThreadQuery,
)
from messenger.tests.test_fixtures.client_fixtures import wait_until


@pytest.fixture
def conversations(gateway) -> ConversationsQuery:
    return ConversationsQuery(gateway)


@pytest.fixture
def thread(gateway) -> ThreadQuery:
    return ThreadQuery(gateway)


@pytest.mark.asyncio
class TestConversationsQuery:

    async def test_concurrent_loads_share_one_request(self, conversations, fake_store, counterpart_id):
        fake_store.add_conversation(counterpart_id)
        gate = fake_store.gate("list_conversations")

        first = asyncio.create_task(conversations.ensure_loaded())
        second = asyncio.create_task(conversations.ensure_loaded())
        await wait_until(lambda: conversations.is_loading)
        gate.set()
        await asyncio.gather(first, second)

        assert fake_store.count("list_conversations") == 1
        assert conversations.status is QueryStatus.SUCCESS
        assert conversations.is_loaded

    async def test_ensure_loaded_is_a_no_op_once_loaded(self, conversations, fake_store):
        await conversations.ensure_loaded()
        await conversations.ensure_loaded()

        assert fake_store.count("list_conversations") == 1

    async def test_failure_sets_error_and_refetch_recovers(self, conversations, fake_store, counterpart_id):
        fake_store.add_conversation(counterpart_id)
        fake_store.fail_next["list_conversations"] = ConnectionError("offline")

        await conversations.ensure_loaded()

        assert conversations.status is QueryStatus.ERROR
        assert isinstance(conversations.error, TransientFetchError)
        assert not conversations.is_loaded

        await conversations.refetch()
        assert conversations.status is QueryStatus.SUCCESS
        assert conversations.error is None
        assert len(conversations.cache.conversations()) == 1

    async def test_dismiss_error(self, conversations, fake_store):
        fake_store.fail_next["list_conversations"] = ConnectionError("offline")
        await conversations.refetch()

        conversations.dismiss_error()
        assert conversations.error is None


@pytest.mark.asyncio
class TestThreadQuery:

    async def test_select_loads_thread(self, thread, fake_store, counterpart_id):
        conversation = fake_store.add_conversation(counterpart_id)
        fake_store.add_message(conversation.id, counterpart_id, "hello")

        await thread.select(conversation.id)

        assert thread.status is QueryStatus.SUCCESS
        assert [m.content for m in thread.messages] == ["hello"]

    async def test_select_none_clears_without_store_call(self, thread, fake_store):
        await thread.select(None)

        assert thread.status is QueryStatus.IDLE
        assert thread.messages == []
        assert fake_store.calls == []

    async def test_slow_response_for_previous_selection_is_discarded(self, thread, fake_store, cache, counterpart_id):
        """
        Behavior:
                - Select A; its fetch hangs. Select B; its fetch completes.
                - Releasing A's fetch afterwards never shows A's messages: B stays selected.
        """
        first = fake_store.add_conversation(counterpart_id)
        second = fake_store.add_conversation(counterpart_id)
        fake_store.add_message(first.id, counterpart_id, "about A")
        fake_store.add_message(second.id, counterpart_id, "about B")
        gate = fake_store.gate("list_messages", first.id)

        pending_select = asyncio.create_task(thread.select(first.id))
        await wait_until(lambda: fake_store.count("list_messages") == 1)
        await thread.select(second.id)
        gate.set()
        await pending_select

        assert thread.conversation_id == second.id
        assert thread.status is QueryStatus.SUCCESS
        assert [m.content for m in thread.messages] == ["about B"]
        assert cache.has_thread(first.id) is False

    async def test_failed_load_sets_error(self, thread, fake_store, counterpart_id):
        conversation = fake_store.add_conversation(counterpart_id)
        fake_store.fail_next["list_messages"] = NotFoundError("Conversation not found")

        await thread.select(conversation.id)

        assert thread.status is QueryStatus.ERROR
        assert isinstance(thread.error, TransientFetchError)

        await thread.refetch()
        assert thread.status is QueryStatus.SUCCESS
        assert thread.error is None

    async def test_generation_increases_per_selection(self, thread, fake_store, counterpart_id):
        conversation = fake_store.add_conversation(counterpart_id)

        await thread.select(conversation.id)
        await thread.select(None)

        assert thread.generation == 2


@pytest.mark.asyncio
class TestMutations:

    async def test_send_mutation_tracks_pending_and_errors(self, gateway, fake_store, counterpart_id):
        conversation = fake_store.add_conversation(counterpart_id)
        mutation = SendMutation(gateway)
        gate = fake_store.gate("send_message")

        task = asyncio.create_task(mutation.send(conversation.id, "hi"))
        await wait_until(lambda: mutation.is_pending)
        gate.set()
        assert (await task) is not None
        assert not mutation.is_pending

        assert await mutation.send(conversation.id, "  ") is None
        assert isinstance(mutation.error, EmptyMessageError)

        mutation.dismiss_error()
        assert mutation.error is None

    async def test_start_mutation_returns_none_on_failure(self, gateway, fake_store, counterpart_id):
        mutation = StartConversationMutation(gateway)
        fake_store.fail_next["start_conversation"] = NotFoundError("Recipient not found")

        assert await mutation.start(counterpart_id, None, "hello") is None
        assert isinstance(mutation.error, ResolveFailedError)

        conversation_id = await mutation.start(counterpart_id, None, "hello")
        assert conversation_id is not None
        assert mutation.error is None
