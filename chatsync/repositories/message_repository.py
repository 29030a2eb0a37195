from datetime import datetime
from typing import List, Optional, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument

from chatsync.models.message import MessageDocument
from chatsync.repositories.base import ErrorHandler, MessageStore, SnapshotHandler, Subscription
from chatsync.repositories.conversation_repository import to_object_id
from chatsync.repositories.live_query import open_live_query


class MessageRepository(MessageStore):

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_id", ASCENDING), ("timestamp", ASCENDING)])

    async def create(self, conversation_id: str, sender_id: str, sender_name: str, text: str) -> MessageDocument:
        # upsert on a fresh id so the timestamp comes from the server clock
        doc = await self.collection.find_one_and_update(
            {"_id": ObjectId()},
            {
                "$setOnInsert": {
                    "conversation_id": conversation_id,
                    "sender_id": sender_id,
                    "sender_name": sender_name,
                    "text": text,
                },
                "$currentDate": {"timestamp": True},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        doc["_id"] = str(doc["_id"])
        return doc

    async def list_for_conversation(self, conversation_id: str) -> List[MessageDocument]:
        cursor = self.collection.find({"conversation_id": conversation_id}).sort([("timestamp", ASCENDING), ("_id", ASCENDING)])
        items = await cursor.to_list(length=None)
        for it in items:
            it["_id"] = str(it.get("_id"))
        return items

    def watch_conversation(self, conversation_id: str, on_snapshot: SnapshotHandler, on_error: Optional[ErrorHandler] = None) -> Subscription:
        pipeline = [{"$match": {"$or": [
            {"fullDocument.conversation_id": conversation_id},
            {"operationType": "delete"},
        ]}}]
        return open_live_query(self.collection, pipeline, lambda: self.list_for_conversation(conversation_id), on_snapshot, on_error)

    async def list_children(self, conversation_id: str) -> List[Tuple[str, Optional[datetime]]]:
        cursor = self.collection.find({"conversation_id": conversation_id}, projection={"_id": True, "timestamp": True})
        items = await cursor.to_list(length=None)
        return [(str(it["_id"]), it.get("timestamp")) for it in items]

    async def delete(self, conversation_id: str, message_id: str) -> bool:
        result = await self.collection.delete_one({"_id": to_object_id(message_id), "conversation_id": conversation_id})
        return bool(result.deleted_count)
