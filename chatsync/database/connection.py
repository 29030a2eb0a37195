import os
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.utils.logger import get_logger


logger = get_logger(__name__)

_client: Optional[AsyncIOMotorClient] = None
_database: Optional[AsyncIOMotorDatabase] = None


async def connect_to_mongo() -> None:
    global _client, _database
    url = os.getenv("MONGO_URL", "mongodb://localhost:27017")
    name = os.getenv("MONGO_DB_NAME", "chatsync")
    # tz_aware so stored timestamps compare equal to the ones read back
    _client = AsyncIOMotorClient(url, tz_aware=True)
    _database = _client[name]
    await ConversationRepository(_database).ensure_indexes()
    await MessageRepository(_database).ensure_indexes()
    logger.info("Connected to MongoDB database %s", name)


async def close_mongo_connection() -> None:
    global _client, _database
    if _client is not None:
        _client.close()
        logger.info("MongoDB connection closed")
    _client = None
    _database = None


def get_database() -> AsyncIOMotorDatabase:
    if _database is None:
        raise RuntimeError("MongoDB is not connected; call connect_to_mongo() first")
    return _database


async def mongo_db_dependency() -> AsyncIOMotorDatabase:
    return get_database()
