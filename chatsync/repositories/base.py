"""Store primitives shared by the MongoDB and in-memory repositories."""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from chatsync.models.conversation import ConversationDocument
from chatsync.models.message import MessageDocument


SnapshotHandler = Callable[[List[Dict[str, Any]]], None]
ErrorHandler = Callable[[BaseException], None]

# Passed as ``if_last_message_at`` to delete regardless of the summary fields.
UNCHECKED: Any = object()


class Subscription:
    """Cancellation token for a live query.

    Every event goes through :meth:`deliver`, so once :meth:`cancel` returns
    the handlers are never called again, even for events already queued on
    the loop.
    """

    def __init__(self, on_snapshot: SnapshotHandler, on_error: Optional[ErrorHandler] = None) -> None:
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._active = True
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._active

    def attach(self, task: asyncio.Task) -> None:
        self._task = task

    def deliver(self, snapshot: List[Dict[str, Any]]) -> None:
        if self._active:
            self._on_snapshot(snapshot)

    def fail(self, exc: BaseException) -> None:
        # terminal: a failed subscription delivers nothing afterwards
        if not self._active:
            return
        self._active = False
        if self._on_error is not None:
            self._on_error(exc)

    def cancel(self) -> None:
        self._active = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None


class ConversationStore(ABC):

    @abstractmethod
    async def list_for_user(self, user_id: str) -> List[ConversationDocument]:
        """Every conversation whose participants include ``user_id``."""

    @abstractmethod
    def watch_for_user(self, user_id: str, on_snapshot: SnapshotHandler, on_error: Optional[ErrorHandler] = None) -> Subscription:
        """Push the full ``list_for_user`` result on every change."""

    @abstractmethod
    async def get(self, conversation_id: str) -> Optional[ConversationDocument]:
        ...

    @abstractmethod
    async def update_summary(self, conversation_id: str, last_message: str) -> datetime:
        """Set ``last_message`` and stamp ``last_message_at`` with server time.

        Raises ConversationNotFound when the record does not exist.
        """

    @abstractmethod
    async def delete(self, conversation_id: str, if_last_message_at: Any = UNCHECKED) -> bool:
        """Delete by id; a missing record is not an error.

        With ``if_last_message_at`` the record is only removed while its
        ``last_message_at`` still equals that value.
        """


class MessageStore(ABC):

    @abstractmethod
    async def list_for_conversation(self, conversation_id: str) -> List[MessageDocument]:
        """Messages ordered by server timestamp, then id."""

    @abstractmethod
    def watch_conversation(self, conversation_id: str, on_snapshot: SnapshotHandler, on_error: Optional[ErrorHandler] = None) -> Subscription:
        ...

    @abstractmethod
    async def list_children(self, conversation_id: str) -> List[Tuple[str, Optional[datetime]]]:
        """(message id, server timestamp) of every message in the conversation."""

    @abstractmethod
    async def create(self, conversation_id: str, sender_id: str, sender_name: str, text: str) -> MessageDocument:
        ...

    @abstractmethod
    async def delete(self, conversation_id: str, message_id: str) -> bool:
        ...


def message_order(doc: MessageDocument):
    ts = doc.get("timestamp")
    # unstamped messages sort last
    return (ts is None, ts or datetime.min, str(doc.get("_id")))
