import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from chatsync.models.conversation import ConversationDocument
from chatsync.utils.ids import normalize_id, to_object_id
from chatsync.utils.realtime_bus import conversations_channel


logger = logging.getLogger(__name__)


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase, bus=None) -> None:
        self._db = db
        self._bus = bus

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("participants", ASCENDING)])
        await self.collection.create_index([("last_message_at", DESCENDING)])

    async def get_or_create(
        self,
        participants: List[str],
        participant_names: Dict[str, str],
        participant_images: Optional[Dict[str, str]],
        service_id: str,
        service_title: str,
    ) -> ConversationDocument:
        members = sorted(participants)
        existing = await self.collection.find_one({"participants": members, "service_id": service_id})
        if existing:
            return normalize_id(existing)
        now = datetime.now(timezone.utc)
        doc: Dict[str, Any] = {
            "participants": members,
            "participant_names": dict(participant_names),
            "participant_images": dict(participant_images or {}),
            "service_id": service_id,
            "service_title": service_title,
            "last_message": f"Inquiry about {service_title}",
            "last_message_sender": None,
            "last_message_at": now,
            "unread_counters": {p: 0 for p in members},
            "read": True,
            "created_at": now,
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        await self._publish(members, doc["_id"])
        return doc

    async def get(self, conversation_id) -> Optional[ConversationDocument]:
        oid = to_object_id(conversation_id)
        if oid is None:
            return None
        return normalize_id(await self.collection.find_one({"_id": oid}))

    async def snapshot_for_user(self, user_id: str) -> List[ConversationDocument]:
        cur = self.collection.find({"participants": user_id}).sort(
            [("last_message_at", DESCENDING), ("_id", DESCENDING)]
        )
        items = await cur.to_list(length=None)
        return [normalize_id(it) for it in items]

    async def list_for_user(self, user_id: str, limit: int = 20, cursor: Optional[str] = None) -> Tuple[List[ConversationDocument], Optional[str]]:
        query: Dict[str, Any] = {"participants": user_id}
        sort = [("last_message_at", DESCENDING), ("_id", DESCENDING)]
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
                {"last_message_at": {"$lt": ts}},
                {"last_message_at": ts, "_id": {"$lt": oid}},
            ]

        cursor_db = self.collection.find(query).sort(sort).limit(limit)
        items = await cursor_db.to_list(length=limit)
        for it in items:
            normalize_id(it)
        next_cursor = None
        if len(items) == limit:
            last = items[-1]
            last_ts = int(last["last_message_at"].timestamp() * 1000)
            next_cursor = f"{last_ts}:{last['_id']}"
        return items, next_cursor

    async def apply_summary(self, conversation_id, fields: Dict[str, Any]) -> Optional[ConversationDocument]:
        oid = to_object_id(conversation_id)
        if oid is None:
            return None
        updated = await self.collection.find_one_and_update(
            {"_id": oid},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            return None
        normalize_id(updated)
        await self._publish(updated.get("participants", []), updated["_id"])
        return updated

    async def reset_unread(
        self,
        conversation_id,
        user_id: str,
        remaining: int = 0,
        read: Optional[bool] = None,
    ) -> Optional[ConversationDocument]:
        fields: Dict[str, Any] = {f"unread_counters.{user_id}": remaining}
        # only the recipient of the newest message decides the read flag
        if read is not None:
            fields["read"] = read
        return await self.apply_summary(conversation_id, fields)

    async def _publish(self, participants: List[str], conversation_id: str) -> None:
        if self._bus is None:
            return
        payload = json.dumps({"type": "conversation", "conversation_id": conversation_id})
        for participant in participants:
            try:
                await self._bus.publish(conversations_channel(participant), payload)
            except Exception:
                logger.exception("Failed to publish change for conversation %s", conversation_id)
