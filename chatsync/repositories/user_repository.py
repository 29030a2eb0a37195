from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from chatsync.repositories.conversation_repository import to_object_id
from chatsync.schemas.conversation import DEFAULT_ROLE, UNKNOWN_USER_NAME, ProfileSnapshot


class UserRepository:
    """Read-only access to the externally owned profile store."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("users")

    async def get_user_by_id(self, user_id: str) -> Optional[dict]:

        user = await self._collection.find_one({"_id": to_object_id(user_id)})
        if user:
            user["_id"] = str(user["_id"])  # normalize to string for API layer
        return user

    async def get_profile(self, user_id: str) -> Optional[ProfileSnapshot]:

        user = await self.get_user_by_id(user_id)
        if not user:
            return None
        return profile_from_user(user_id, user)


def profile_from_user(user_id: str, user: dict) -> ProfileSnapshot:
    return ProfileSnapshot(
        id=user_id,
        name=user.get("name") or user.get("username") or user.get("full_name") or UNKNOWN_USER_NAME,
        role=user.get("role") or DEFAULT_ROLE,
        photo_url=user.get("photo_url") or user.get("photoURL") or "",
        location=user.get("location") or "",
    )
