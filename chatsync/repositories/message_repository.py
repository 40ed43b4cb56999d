import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from chatsync.models.message import MessageDocument
from chatsync.utils.ids import normalize_id, to_object_id
from chatsync.utils.realtime_bus import messages_channel


logger = logging.getLogger(__name__)


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase, bus=None) -> None:
        self._db = db
        self._bus = bus

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_id", ASCENDING), ("timestamp", ASCENDING)])

    async def append(self, conversation_id, sender_id: str, text: str) -> MessageDocument:
        doc: Dict[str, Any] = {
            "conversation_id": to_object_id(conversation_id),
            "sender_id": sender_id,
            "text": text,
            "timestamp": datetime.now(timezone.utc),
            "read": False,
        }
        result = await self.collection.insert_one(doc)
        saved = normalize_id(dict(doc, _id=result.inserted_id))
        await self._publish(saved["conversation_id"])
        return saved

    async def snapshot_for_conversation(self, conversation_id) -> List[MessageDocument]:
        cur = self.collection.find({"conversation_id": to_object_id(conversation_id)}).sort(
            [("timestamp", ASCENDING), ("_id", ASCENDING)]
        )
        items = await cur.to_list(length=None)
        return [normalize_id(it) for it in items]

    async def get_messages_by_conversation(
        self,
        conversation_id,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> Tuple[List[MessageDocument], Optional[str]]:
        query: Dict[str, Any] = {"conversation_id": to_object_id(conversation_id)}
        sort = [("timestamp", DESCENDING), ("_id", DESCENDING)]
        if cursor:
            # cursor format: ts_ms:oid
            try:
                ts_str, oid_hex = cursor.split(":", 1)
                ts = datetime.fromtimestamp(int(ts_str) / 1000.0, tz=timezone.utc)
            except ValueError:
                raise ValueError("Invalid cursor")
            oid = to_object_id(oid_hex)
            if oid is None:
                raise ValueError("Invalid cursor")
            query["$or"] = [
                {"timestamp": {"$lt": ts}},
                {"timestamp": ts, "_id": {"$lt": oid}},
            ]
        cur = self.collection.find(query).sort(sort).limit(limit)
        items = await cur.to_list(length=limit)
        for it in items:
            normalize_id(it)
        next_cursor = None
        if len(items) == limit:
            last = items[-1]
            last_ts = int(last["timestamp"].timestamp() * 1000)
            next_cursor = f"{last_ts}:{last['_id']}"
        # pages are fetched newest first but returned in reading order
        return list(reversed(items)), next_cursor

    async def latest(self, conversation_id) -> Optional[MessageDocument]:
        doc = await self.collection.find_one(
            {"conversation_id": to_object_id(conversation_id)},
            sort=[("timestamp", DESCENDING), ("_id", DESCENDING)],
        )
        return normalize_id(doc)

    async def count_unread(self, conversation_id, reader_id: str) -> int:
        return await self.collection.count_documents({
            "conversation_id": to_object_id(conversation_id),
            "sender_id": {"$ne": reader_id},
            "read": False,
        })

    async def mark_read_up_to(self, conversation_id, reader_id: str, up_to: Optional[datetime] = None) -> int:
        query: Dict[str, Any] = {
            "conversation_id": to_object_id(conversation_id),
            "sender_id": {"$ne": reader_id},
            "read": False,
        }
        if up_to is not None:
            query["timestamp"] = {"$lte": up_to}
        result = await self.collection.update_many(query, {"$set": {"read": True}})
        modified = result.modified_count or 0
        if modified:
            await self._publish(str(conversation_id))
        return modified

    async def _publish(self, conversation_id: str) -> None:
        if self._bus is None:
            return
        payload = json.dumps({"type": "messages", "conversation_id": conversation_id})
        try:
            await self._bus.publish(messages_channel(conversation_id), payload)
        except Exception:
            logger.exception("Failed to publish change for thread %s", conversation_id)
