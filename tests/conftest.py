"""Shared fakes for the sync tests.

The fake repositories keep documents in memory but publish change signals on
a real LocalBus, the same way the Mongo repositories do.
"""

import asyncio
import copy
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from chatsync.services.unread_counter import UnreadCounter
from chatsync.utils.realtime_bus import LocalBus, conversations_channel, messages_channel


BASE_TIME = datetime(2024, 5, 6, 9, 0, tzinfo=timezone.utc)


class FakeConversationRepository:

    def __init__(self, bus=None) -> None:
        self._bus = bus
        self.docs: Dict[str, Dict[str, Any]] = {}
        self.updates: List[tuple] = []
        self.fail_snapshot = False
        self.fail_updates = False
        self._seq = 0

    def add(self, participants, names=None, service_title="Plumbing", **fields) -> Dict[str, Any]:
        self._seq += 1
        conversation_id = f"c{self._seq}"
        doc = {
            "_id": conversation_id,
            "participants": sorted(participants),
            "participant_names": names or {},
            "participant_images": {},
            "service_id": f"s{self._seq}",
            "service_title": service_title,
            "last_message": f"Inquiry about {service_title}",
            "last_message_sender": None,
            "last_message_at": BASE_TIME + timedelta(minutes=self._seq),
            "unread_counters": {p: 0 for p in participants},
            "read": True,
            "created_at": BASE_TIME,
        }
        doc.update(fields)
        self.docs[conversation_id] = doc
        return copy.deepcopy(doc)

    async def get_or_create(self, participants, participant_names, participant_images, service_id, service_title):
        members = sorted(participants)
        for doc in self.docs.values():
            if doc["participants"] == members and doc["service_id"] == service_id:
                return copy.deepcopy(doc)
        doc = self.add(members, participant_names, service_title=service_title, service_id=service_id,
                       participant_images=dict(participant_images or {}))
        await self._publish(doc)
        return doc

    async def get(self, conversation_id) -> Optional[Dict[str, Any]]:
        doc = self.docs.get(conversation_id)
        return copy.deepcopy(doc) if doc else None

    async def snapshot_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        if self.fail_snapshot:
            raise ConnectionError("network unreachable")
        items = [d for d in self.docs.values() if user_id in d["participants"]]
        items.sort(key=lambda d: (d["last_message_at"], d["_id"]), reverse=True)
        return copy.deepcopy(items)

    async def list_for_user(self, user_id: str, limit: int = 20, cursor: Optional[str] = None):
        items = await self.snapshot_for_user(user_id)
        return items[:limit], None

    async def apply_summary(self, conversation_id, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if self.fail_updates:
            raise ConnectionError("write failed")
        doc = self.docs.get(conversation_id)
        if doc is None:
            return None
        for key, value in fields.items():
            target = doc
            parts = key.split(".")
            for part in parts[:-1]:
                target = target.setdefault(part, {})
            target[parts[-1]] = copy.deepcopy(value)
        self.updates.append((conversation_id, dict(fields)))
        await self._publish(doc)
        return copy.deepcopy(doc)

    async def reset_unread(self, conversation_id, user_id: str, remaining: int = 0, read=None):
        fields = {f"unread_counters.{user_id}": remaining}
        if read is not None:
            fields["read"] = read
        return await self.apply_summary(conversation_id, fields)

    async def _publish(self, doc) -> None:
        if self._bus is None:
            return
        payload = json.dumps({"type": "conversation", "conversation_id": doc["_id"]})
        for participant in doc["participants"]:
            await self._bus.publish(conversations_channel(participant), payload)


class FakeMessageRepository:

    def __init__(self, bus=None) -> None:
        self._bus = bus
        self.docs: List[Dict[str, Any]] = []
        self.appends = 0
        self.mark_read_calls: List[tuple] = []
        self.fail_append = False
        self._seq = 0

    def add(self, conversation_id, sender_id, text, timestamp=None, read=False) -> Dict[str, Any]:
        self._seq += 1
        doc = {
            "_id": f"m{self._seq}",
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "text": text,
            "timestamp": timestamp or BASE_TIME + timedelta(hours=1, seconds=self._seq),
            "read": read,
        }
        self.docs.append(doc)
        return copy.deepcopy(doc)

    async def append(self, conversation_id, sender_id: str, text: str) -> Dict[str, Any]:
        if self.fail_append:
            raise ConnectionError("write failed")
        self.appends += 1
        doc = self.add(conversation_id, sender_id, text)
        await self._publish(conversation_id)
        return doc

    def _thread(self, conversation_id) -> List[Dict[str, Any]]:
        items = [d for d in self.docs if d["conversation_id"] == conversation_id]
        items.sort(key=lambda d: (d["timestamp"], d["_id"]))
        return items

    async def snapshot_for_conversation(self, conversation_id) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._thread(conversation_id))

    async def latest(self, conversation_id) -> Optional[Dict[str, Any]]:
        items = self._thread(conversation_id)
        return copy.deepcopy(items[-1]) if items else None

    async def count_unread(self, conversation_id, reader_id: str) -> int:
        return sum(1 for d in self._thread(conversation_id) if d["sender_id"] != reader_id and not d["read"])

    async def mark_read_up_to(self, conversation_id, reader_id: str, up_to=None) -> int:
        self.mark_read_calls.append((conversation_id, reader_id, up_to))
        modified = 0
        for doc in self._thread(conversation_id):
            if doc["sender_id"] == reader_id or doc["read"]:
                continue
            if up_to is not None and doc["timestamp"] > up_to:
                continue
            doc["read"] = True
            modified += 1
        if modified:
            await self._publish(conversation_id)
        return modified

    async def get_messages_by_conversation(self, conversation_id, limit: int = 50, cursor: Optional[str] = None):
        return copy.deepcopy(self._thread(conversation_id)[-limit:]), None

    async def _publish(self, conversation_id) -> None:
        if self._bus is not None:
            await self._bus.publish(messages_channel(conversation_id), json.dumps({"type": "messages"}))


class RecordingNotifier:

    def __init__(self) -> None:
        self.sent: List[tuple] = []
        self.keys: List[Optional[str]] = []

    async def schedule(self, user_id, title, body, data=None, dedupe_key=None) -> None:
        self.sent.append((user_id, title, body, data))
        self.keys.append(dedupe_key)


@pytest.fixture
def bus():
    return LocalBus()


@pytest.fixture
def conversation_repo(bus):
    return FakeConversationRepository(bus)


@pytest.fixture
def message_repo(bus):
    return FakeMessageRepository(bus)


@pytest.fixture
def unread_counter(message_repo, conversation_repo):
    return UnreadCounter(message_repo, conversation_repo)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def wait_until():
    async def _wait(predicate, timeout: float = 1.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)
    return _wait
