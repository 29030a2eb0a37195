"""Tests for SubscriptionManager."""

import pytest

from chatsync.errors import MissingUserError
from chatsync.services.subscription_manager import SubscriptionManager
from conftest import at, settle


@pytest.fixture
def manager(conversations):
    return SubscriptionManager(conversations)


class TestSubscriptionManager:

    @pytest.mark.parametrize("user_id", [None, "", "   "])
    async def test_open_without_user_fails_fast(self, manager, db, user_id):
        with pytest.raises(MissingUserError):
            manager.open(user_id, lambda snapshot: None)
        assert manager.active is False
        assert db._watchers == []

    async def test_delivers_initial_and_subsequent_snapshots(self, manager, db):
        db.insert_conversation(["alice", "bob"], conversation_id="c1", created_at=at(1))
        snapshots = []
        manager.open("alice", snapshots.append)
        await settle()
        db.insert_conversation(["alice", "carol"], conversation_id="c2", created_at=at(2))
        db.insert_conversation(["bob", "carol"], conversation_id="c3", created_at=at(3))
        await settle()

        assert [sorted(doc["_id"] for doc in snap) for snap in snapshots] == [
            ["c1"],
            ["c1", "c2"],
            # revisions that do not touch alice's records still arrive
            ["c1", "c2"],
        ]

    async def test_no_delivery_after_cancel(self, manager, db):
        snapshots = []
        manager.open("alice", snapshots.append)
        await settle()
        db.insert_conversation(["alice", "bob"], created_at=at(1))
        manager.cancel()
        await settle()
        assert snapshots == [[]]
        assert manager.active is False

    async def test_reopen_after_cancel(self, manager, db):
        first, second = [], []
        manager.open("alice", first.append)
        manager.cancel()
        manager.open("alice", second.append)
        await settle()
        assert first == []
        assert second == [[]]
        assert manager.user_id == "alice"

    async def test_open_replaces_previous_subscription(self, manager, db):
        first, second = [], []
        manager.open("alice", first.append)
        manager.open("bob", second.append)
        db.insert_conversation(["alice", "bob"], conversation_id="c1", created_at=at(1))
        await settle()
        assert first == []
        assert [[doc["_id"] for doc in snap] for snap in second] == [[], ["c1"]]

    async def test_stream_error_is_terminal(self, manager, db):
        snapshots, errors = [], []
        manager.open("alice", snapshots.append, errors.append)
        await settle()
        db.fail_watchers(RuntimeError("socket closed"))
        db.insert_conversation(["alice", "bob"], created_at=at(1))
        await settle()
        assert len(errors) == 1
        assert snapshots == [[]]
        assert manager.active is False
