"""In-process document store with the same contract as the MongoDB repositories.

Used for embedding the engine without a database and as the test backend.
Every operation yields to the loop once before touching state, and live
queries are delivered through the opening loop in mutation order, so the
scheduling seen by callers matches a remote store.
"""

import asyncio
import copy
import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from chatsync.errors import ConversationNotFound
from chatsync.models.conversation import ConversationDocument
from chatsync.models.message import MessageDocument
from chatsync.repositories.base import (
    UNCHECKED,
    ConversationStore,
    ErrorHandler,
    MessageStore,
    SnapshotHandler,
    Subscription,
    message_order,
)
from chatsync.repositories.user_repository import profile_from_user
from chatsync.schemas.conversation import ProfileSnapshot


class InMemoryDatabase:

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.conversations: Dict[str, ConversationDocument] = {}
        self.messages: Dict[str, Dict[str, MessageDocument]] = {}
        self.users: Dict[str, dict] = {}
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._last_stamp: Optional[datetime] = None
        self._ids = itertools.count(1)
        self._watchers: List[tuple] = []

    def server_time(self) -> datetime:
        # strictly increasing, like a store-assigned timestamp
        stamp = self._clock()
        if self._last_stamp is not None and stamp <= self._last_stamp:
            stamp = self._last_stamp + timedelta(microseconds=1)
        self._last_stamp = stamp
        return stamp

    def new_id(self, prefix: str) -> str:
        return f"{prefix}{next(self._ids):06d}"

    def insert_conversation(
        self,
        participants: List[str],
        participant_names: Optional[Dict[str, str]] = None,
        conversation_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
        last_message: Optional[str] = None,
        last_message_at: Optional[datetime] = None,
    ) -> str:
        """Create a conversation record directly, as an initiating client would."""
        conversation_id = conversation_id or self.new_id("c")
        self.conversations[conversation_id] = {
            "_id": conversation_id,
            "participants": list(participants),
            "participant_names": dict(participant_names or {}),
            "last_message": last_message,
            "last_message_at": last_message_at,
            "created_at": created_at if created_at is not None else self.server_time(),
        }
        self.notify()
        return conversation_id

    def insert_message(self, conversation_id: str, sender_id: str, text: str, timestamp: datetime, sender_name: str = "") -> str:
        message_id = self.new_id("m")
        self.messages.setdefault(conversation_id, {})[message_id] = {
            "_id": message_id,
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "sender_name": sender_name,
            "text": text,
            "timestamp": timestamp,
        }
        self.notify()
        return message_id

    def conversations_for(self, user_id: str) -> List[ConversationDocument]:
        return [copy.deepcopy(doc) for doc in self.conversations.values() if user_id in doc.get("participants", [])]

    def messages_for(self, conversation_id: str) -> List[MessageDocument]:
        docs = [copy.deepcopy(doc) for doc in self.messages.get(conversation_id, {}).values()]
        return sorted(docs, key=message_order)

    def watch(self, fetch: Callable[[], List[Dict[str, Any]]], on_snapshot: SnapshotHandler, on_error: Optional[ErrorHandler]) -> Subscription:
        loop = asyncio.get_running_loop()
        subscription = Subscription(on_snapshot, on_error)
        self._watchers.append((loop, fetch, subscription))
        loop.call_soon(subscription.deliver, fetch())
        return subscription

    def notify(self) -> None:
        # call_soon_threadsafe keeps delivery on the loop that opened the watch
        self._watchers = [w for w in self._watchers if w[2].active]
        for loop, fetch, sub in self._watchers:
            loop.call_soon_threadsafe(sub.deliver, fetch())

    def fail_watchers(self, exc: BaseException) -> None:
        """Terminate every live query with ``exc``, as a dropped connection would."""
        for loop, _fetch, sub in self._watchers:
            loop.call_soon_threadsafe(sub.fail, exc)
        self._watchers = []


class InMemoryConversationRepository(ConversationStore):

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    async def list_for_user(self, user_id: str) -> List[ConversationDocument]:
        await asyncio.sleep(0)
        return self._db.conversations_for(user_id)

    def watch_for_user(self, user_id: str, on_snapshot: SnapshotHandler, on_error: Optional[ErrorHandler] = None) -> Subscription:
        return self._db.watch(lambda: self._db.conversations_for(user_id), on_snapshot, on_error)

    async def get(self, conversation_id: str) -> Optional[ConversationDocument]:
        await asyncio.sleep(0)
        doc = self._db.conversations.get(conversation_id)
        return copy.deepcopy(doc) if doc else None

    async def update_summary(self, conversation_id: str, last_message: str) -> datetime:
        await asyncio.sleep(0)
        doc = self._db.conversations.get(conversation_id)
        if doc is None:
            raise ConversationNotFound(conversation_id)
        doc["last_message"] = last_message
        doc["last_message_at"] = self._db.server_time()
        self._db.notify()
        return doc["last_message_at"]

    async def delete(self, conversation_id: str, if_last_message_at: Any = UNCHECKED) -> bool:
        await asyncio.sleep(0)
        doc = self._db.conversations.get(conversation_id)
        if doc is None:
            return False
        if if_last_message_at is not UNCHECKED and doc.get("last_message_at") != if_last_message_at:
            return False
        del self._db.conversations[conversation_id]
        self._db.notify()
        return True


class InMemoryMessageRepository(MessageStore):

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    async def list_for_conversation(self, conversation_id: str) -> List[MessageDocument]:
        await asyncio.sleep(0)
        return self._db.messages_for(conversation_id)

    def watch_conversation(self, conversation_id: str, on_snapshot: SnapshotHandler, on_error: Optional[ErrorHandler] = None) -> Subscription:
        return self._db.watch(lambda: self._db.messages_for(conversation_id), on_snapshot, on_error)

    async def list_children(self, conversation_id: str) -> List[Tuple[str, Optional[datetime]]]:
        await asyncio.sleep(0)
        children = self._db.messages.get(conversation_id, {})
        return [(message_id, doc.get("timestamp")) for message_id, doc in children.items()]

    async def create(self, conversation_id: str, sender_id: str, sender_name: str, text: str) -> MessageDocument:
        await asyncio.sleep(0)
        message_id = self._db.new_id("m")
        doc: MessageDocument = {
            "_id": message_id,
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "sender_name": sender_name,
            "text": text,
            "timestamp": self._db.server_time(),
        }
        self._db.messages.setdefault(conversation_id, {})[message_id] = doc
        self._db.notify()
        return copy.deepcopy(doc)

    async def delete(self, conversation_id: str, message_id: str) -> bool:
        await asyncio.sleep(0)
        children = self._db.messages.get(conversation_id, {})
        if children.pop(message_id, None) is None:
            return False
        if not children:
            self._db.messages.pop(conversation_id, None)
        self._db.notify()
        return True


class InMemoryUserRepository:

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    async def get_profile(self, user_id: str) -> Optional[ProfileSnapshot]:
        await asyncio.sleep(0)
        user = self._db.users.get(user_id)
        if not user:
            return None
        return profile_from_user(user_id, user)
