from datetime import datetime, timezone

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError


MARKER_TTL_SECONDS = 7 * 24 * 3600


class NotificationMarkerRepository:
    """Pushes already sent, one document per (user, key)."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["notification_markers"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("user_id", ASCENDING), ("key", ASCENDING)], unique=True)
        await self.collection.create_index("created_at", expireAfterSeconds=MARKER_TTL_SECONDS)

    async def claim(self, user_id: str, key: str) -> bool:
        """True only for the first caller to claim ``key`` for ``user_id``."""
        try:
            result = await self.collection.update_one(
                {"user_id": user_id, "key": key},
                {"$setOnInsert": {"created_at": datetime.now(timezone.utc)}},
                upsert=True,
            )
        except DuplicateKeyError:
            # lost a concurrent upsert race
            return False
        return result.upserted_id is not None
