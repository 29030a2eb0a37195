"""Tests for the in-memory store contract."""

import pytest

from chatsync.errors import ConversationNotFound
from chatsync.repositories.base import Subscription
from conftest import at, settle


class TestServerTime:

    def test_timestamps_strictly_increase(self, db, clock):
        clock.set(50)
        first = db.server_time()
        second = db.server_time()
        clock.set(10)
        third = db.server_time()
        assert first < second < third


class TestInMemoryConversationRepository:

    async def test_update_summary_missing(self, conversations):
        with pytest.raises(ConversationNotFound):
            await conversations.update_summary("missing", "hi")

    async def test_conditional_delete(self, db, conversations):
        db.insert_conversation(["a", "b"], conversation_id="c1", created_at=at(1), last_message_at=at(5))
        assert await conversations.delete("c1", if_last_message_at=at(4)) is False
        assert await conversations.delete("c1", if_last_message_at=at(5)) is True
        assert await conversations.delete("c1") is False

    async def test_returned_documents_are_copies(self, db, conversations):
        db.insert_conversation(["a", "b"], conversation_id="c1", created_at=at(1))
        doc = await conversations.get("c1")
        doc["participants"].append("mallory")
        assert db.conversations["c1"]["participants"] == ["a", "b"]


class TestInMemoryMessageRepository:

    async def test_create_and_delete(self, db, messages):
        doc = await messages.create("c1", "a", "A", "hello")
        assert await messages.list_children("c1") == [(doc["_id"], doc["timestamp"])]
        assert await messages.delete("c1", doc["_id"]) is True
        assert await messages.delete("c1", doc["_id"]) is False
        assert await messages.list_children("c1") == []

    async def test_ordering_ties_fall_back_to_id(self, db, messages):
        first = db.insert_message("c1", "a", "one", at(10))
        second = db.insert_message("c1", "b", "two", at(10))
        docs = await messages.list_for_conversation("c1")
        assert [d["_id"] for d in docs] == sorted([first, second])


class TestSubscription:

    def test_cancel_blocks_delivery(self):
        received = []
        sub = Subscription(received.append)
        sub.deliver([1])
        sub.cancel()
        sub.deliver([2])
        assert received == [[1]]

    def test_fail_is_terminal(self):
        received, errors = [], []
        sub = Subscription(received.append, errors.append)
        sub.fail(RuntimeError("x"))
        sub.fail(RuntimeError("y"))
        sub.deliver([1])
        assert received == []
        assert len(errors) == 1

    async def test_watch_queues_initial_snapshot(self, db, conversations):
        received = []
        conversations.watch_for_user("a", received.append)
        assert received == []
        await settle(1)
        assert received == [[]]
