"""Tests for the change-stream live query over a fake collection."""

import asyncio

import pytest

from chatsync.errors import SubscriptionFailure
from chatsync.repositories.live_query import open_live_query
from conftest import settle


END = object()


class FakeChangeStream:

    def __init__(self):
        self.events = asyncio.Queue()
        self.started = False
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.closed = True
        return False

    async def try_next(self):
        self.started = True
        return None

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.events.get()
        if item is END:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item


class FakeCollection:

    name = "conversations"

    def __init__(self, error=None):
        self.stream = FakeChangeStream()
        self.error = error
        self.watch_calls = []

    def watch(self, pipeline, **kwargs):
        self.watch_calls.append((pipeline, kwargs))
        if self.error is not None:
            raise self.error
        return self.stream


class Recorder:

    def __init__(self, collection):
        self.collection = collection
        self.fetches = 0
        self.started_before_fetch = []
        self.snapshots = []
        self.errors = []

    async def fetch(self):
        self.started_before_fetch.append(self.collection.stream.started)
        self.fetches += 1
        return [{"_id": f"rev{self.fetches}"}]


@pytest.fixture
def collection():
    return FakeCollection()


@pytest.fixture
def recorder(collection):
    return Recorder(collection)


def open_query(collection, recorder):
    return open_live_query(collection, [{"$match": {}}], recorder.fetch, recorder.snapshots.append, recorder.errors.append)


class TestOpenLiveQuery:

    async def test_initial_fetch_after_cursor_opens(self, collection, recorder):
        sub = open_query(collection, recorder)
        await settle()
        assert recorder.snapshots == [[{"_id": "rev1"}]]
        assert recorder.started_before_fetch == [True]
        assert collection.watch_calls[0][1]["full_document"] == "updateLookup"
        sub.cancel()

    async def test_every_change_refetches(self, collection, recorder):
        sub = open_query(collection, recorder)
        await settle()
        collection.stream.events.put_nowait({"operationType": "insert"})
        collection.stream.events.put_nowait({"operationType": "delete"})
        await settle()
        assert [snap[0]["_id"] for snap in recorder.snapshots] == ["rev1", "rev2", "rev3"]
        sub.cancel()

    async def test_stream_error_fails_subscription(self, collection, recorder):
        sub = open_query(collection, recorder)
        await settle()
        cause = RuntimeError("cursor killed")
        collection.stream.events.put_nowait(cause)
        collection.stream.events.put_nowait({"operationType": "insert"})
        await settle()

        assert len(recorder.errors) == 1
        assert isinstance(recorder.errors[0], SubscriptionFailure)
        assert recorder.errors[0].__cause__ is cause
        assert len(recorder.snapshots) == 1
        assert sub.active is False

    async def test_closed_stream_fails_subscription(self, collection, recorder):
        sub = open_query(collection, recorder)
        await settle()
        collection.stream.events.put_nowait(END)
        await settle()
        assert len(recorder.errors) == 1
        assert "closed" in str(recorder.errors[0])
        assert sub.active is False

    async def test_watch_refused(self, recorder):
        collection = FakeCollection(error=RuntimeError("The $changeStream stage is only supported on replica sets"))
        recorder.collection = collection
        open_query(collection, recorder)
        await settle()
        assert recorder.snapshots == []
        assert "replica sets" in str(recorder.errors[0])

    async def test_cancel_stops_delivery_and_closes_stream(self, collection, recorder):
        sub = open_query(collection, recorder)
        await settle()
        sub.cancel()
        collection.stream.events.put_nowait({"operationType": "insert"})
        await settle()
        assert len(recorder.snapshots) == 1
        assert recorder.errors == []
        assert collection.stream.closed is True
