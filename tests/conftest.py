"""Shared fixtures: an in-memory store with a controllable server clock."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from chatsync.main import app
from chatsync.repositories.memory_repository import (
    InMemoryConversationRepository,
    InMemoryDatabase,
    InMemoryMessageRepository,
    InMemoryUserRepository,
)
from chatsync.utils.dependencies import get_conversation_store, get_message_store, get_profile_lookup
from chatsync.utils.realtime_bus import NoopBus, get_bus


EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    """Server time ``seconds`` after the test epoch."""
    return EPOCH + timedelta(seconds=seconds)


class FakeClock:

    def __init__(self, start: float = 1000) -> None:
        self.now = at(start)

    def set(self, seconds: float) -> None:
        self.now = at(seconds)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db(clock):
    return InMemoryDatabase(clock=clock)


@pytest.fixture
def conversations(db):
    return InMemoryConversationRepository(db)


@pytest.fixture
def messages(db):
    return InMemoryMessageRepository(db)


@pytest.fixture
def users(db):
    return InMemoryUserRepository(db)


@pytest.fixture
def client(conversations, messages, users):
    """HTTP client wired to the in-memory store instead of MongoDB."""
    app.dependency_overrides[get_conversation_store] = lambda: conversations
    app.dependency_overrides[get_message_store] = lambda: messages
    app.dependency_overrides[get_profile_lookup] = lambda: users.get_profile
    app.dependency_overrides[get_bus] = NoopBus
    # not entered as a context manager, so the MongoDB lifespan is skipped
    yield TestClient(app)
    app.dependency_overrides.clear()


async def settle(rounds: int = 10) -> None:
    """Let queued store deliveries and short store operations run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
