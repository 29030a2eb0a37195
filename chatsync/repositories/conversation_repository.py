from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from chatsync.errors import ConversationNotFound
from chatsync.models.conversation import ConversationDocument
from chatsync.repositories.base import UNCHECKED, ConversationStore, ErrorHandler, SnapshotHandler, Subscription
from chatsync.repositories.live_query import open_live_query


def to_object_id(value: Any) -> Any:
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return value


class ConversationRepository(ConversationStore):

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("participants", ASCENDING)])
        await self.collection.create_index([("last_message_at", DESCENDING)])

    async def list_for_user(self, user_id: str) -> List[ConversationDocument]:
        cursor = self.collection.find({"participants": user_id})
        items = await cursor.to_list(length=None)
        for it in items:
            it["_id"] = str(it.get("_id"))
        return items

    def watch_for_user(self, user_id: str, on_snapshot: SnapshotHandler, on_error: Optional[ErrorHandler] = None) -> Subscription:
        # deletes carry no document, so any delete triggers a re-read
        pipeline = [{"$match": {"$or": [
            {"fullDocument.participants": user_id},
            {"operationType": "delete"},
        ]}}]
        return open_live_query(self.collection, pipeline, lambda: self.list_for_user(user_id), on_snapshot, on_error)

    async def get(self, conversation_id: str) -> Optional[ConversationDocument]:
        doc = await self.collection.find_one({"_id": to_object_id(conversation_id)})
        if doc:
            doc["_id"] = str(doc["_id"])
        return doc

    async def update_summary(self, conversation_id: str, last_message: str) -> datetime:
        doc = await self.collection.find_one_and_update(
            {"_id": to_object_id(conversation_id)},
            {
                "$set": {"last_message": last_message},
                "$currentDate": {"last_message_at": True},
            },
            projection={"last_message_at": True},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise ConversationNotFound(conversation_id)
        return doc["last_message_at"]

    async def delete(self, conversation_id: str, if_last_message_at: Any = UNCHECKED) -> bool:
        query: Dict[str, Any] = {"_id": to_object_id(conversation_id)}
        if if_last_message_at is not UNCHECKED:
            # None matches both a null and a missing field
            query["last_message_at"] = if_last_message_at
        result = await self.collection.delete_one(query)
        return bool(result.deleted_count)
