from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from motor.motor_asyncio import AsyncIOMotorDatabase

from chatsync.database.connection import mongo_db_dependency
from chatsync.repositories.base import ConversationStore, MessageStore
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.repositories.user_repository import UserRepository
from chatsync.services.reconciler import ProfileLookup


async def get_current_user(
    x_user_id: Optional[str] = Header(default=None),
    x_user_name: Optional[str] = Header(default=None),
) -> dict:
    # Identity is established upstream (gateway / auth middleware); override
    # this dependency to plug in a real authentication scheme.
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return {"_id": x_user_id.strip(), "name": x_user_name}


def get_conversation_store(db: AsyncIOMotorDatabase = Depends(mongo_db_dependency)) -> ConversationStore:
    return ConversationRepository(db)


def get_message_store(db: AsyncIOMotorDatabase = Depends(mongo_db_dependency)) -> MessageStore:
    return MessageRepository(db)


def get_profile_lookup(db: AsyncIOMotorDatabase = Depends(mongo_db_dependency)) -> ProfileLookup:
    return UserRepository(db).get_profile
