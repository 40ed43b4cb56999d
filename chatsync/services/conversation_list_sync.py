import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from chatsync.services.unread_counter import UnreadCounter, unread_for
from chatsync.utils.live_query import LiveQuery
from chatsync.utils.realtime_bus import conversations_channel


logger = logging.getLogger(__name__)

NOTIFICATION_TITLE = "New Message"


def other_participant(conversation: Dict[str, Any], user_id: Optional[str]) -> Optional[str]:
    for participant in conversation.get("participants", []):
        if participant != user_id:
            return participant
    return None


def other_participant_name(conversation: Dict[str, Any], user_id: Optional[str]) -> str:
    other = other_participant(conversation, user_id)
    if other is None:
        return ""
    return (conversation.get("participant_names") or {}).get(other, "")


def is_unread_for(conversation: Dict[str, Any], user_id: Optional[str]) -> bool:
    sender = conversation.get("last_message_sender")
    if sender is None or sender == user_id:
        return False
    return unread_for(conversation, user_id) > 0


def notification_key(conversation_id: str, marker: Optional[datetime]) -> str:
    stamp = marker.isoformat() if isinstance(marker, datetime) else str(marker)
    return f"{conversation_id}:{stamp}"


def matches_query(conversation: Dict[str, Any], user_id: Optional[str], query: str) -> bool:
    needle = query.strip().lower()
    if not needle:
        return True
    name = other_participant_name(conversation, user_id).lower()
    title = (conversation.get("service_title") or "").lower()
    return needle in name or needle in title


class ConversationListSync:
    """Live list of the signed-in user's conversations, newest first.

    Every snapshot replaces the whole list. A notification is scheduled
    when an incoming message is first seen unread; snapshots that merely
    re-deliver the same state (reconnects, unrelated updates) stay quiet.
    """

    def __init__(
        self,
        user_id: Optional[str],
        conversation_repo,
        bus,
        unread_counter: UnreadCounter,
        notifier=None,
        on_change: Optional[Callable[[List[Dict[str, Any]]], Awaitable[None]]] = None,
    ) -> None:
        self._user_id = user_id
        self._conversation_repo = conversation_repo
        self._bus = bus
        self._unread_counter = unread_counter
        self._notifier = notifier
        self._on_change = on_change
        self._conversations: List[Dict[str, Any]] = []
        self._notified: Dict[str, Optional[datetime]] = {}
        self._live_query: Optional[LiveQuery] = None
        self.last_error: Optional[Exception] = None

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def conversations(self) -> List[Dict[str, Any]]:
        return list(self._conversations)

    @property
    def active(self) -> bool:
        return self._live_query is not None and self._live_query.active

    async def start(self) -> None:
        if not self._user_id:
            logger.info("No signed-in user, conversation list stays empty")
            return
        if self._live_query is None:
            self._live_query = LiveQuery(
                self._bus,
                conversations_channel(self._user_id),
                fetch=lambda: self._conversation_repo.snapshot_for_user(self._user_id),
                on_snapshot=self._apply_snapshot,
                on_error=self._on_error,
            )
        await self._live_query.start()

    async def stop(self) -> None:
        if self._live_query is not None:
            await self._live_query.stop()

    async def refresh(self) -> None:
        if self._live_query is not None:
            await self._live_query.refresh()

    def search(self, query: str) -> List[Dict[str, Any]]:
        return [c for c in self._conversations if matches_query(c, self._user_id, query)]

    async def mark_read(self, conversation_id: str) -> bool:
        if not self._user_id:
            return False
        try:
            await self._unread_counter.mark_read(conversation_id, self._user_id)
        except Exception:
            logger.exception("Error marking conversation %s as read", conversation_id)
            return False
        return True

    async def _apply_snapshot(self, docs: List[Dict[str, Any]]) -> None:
        self._conversations = [d for d in docs if self._user_id in d.get("participants", [])]
        self.last_error = None
        await self._notify_new_messages()
        if self._on_change is not None:
            await self._on_change(self.conversations)

    async def _on_error(self, exc: Exception) -> None:
        # keep showing the last known list
        self.last_error = exc
        logger.warning("Keeping last known conversation list for %s", self._user_id)

    async def _notify_new_messages(self) -> None:
        for conversation in self._conversations:
            conversation_id = conversation["_id"]
            if not is_unread_for(conversation, self._user_id):
                self._notified.pop(conversation_id, None)
                continue
            marker = conversation.get("last_message_at")
            if conversation_id in self._notified and self._notified[conversation_id] == marker:
                continue
            self._notified[conversation_id] = marker
            await self._schedule_notification(conversation, marker)

    async def _schedule_notification(self, conversation: Dict[str, Any], marker: Optional[datetime]) -> None:
        if self._notifier is None:
            return
        name = other_participant_name(conversation, self._user_id)
        body = f"New message from {name}: {conversation.get('last_message') or ''}"
        try:
            await self._notifier.schedule(
                self._user_id,
                NOTIFICATION_TITLE,
                body,
                {"conversation_id": conversation["_id"]},
                dedupe_key=notification_key(conversation["_id"], marker),
            )
        except Exception:
            logger.exception("Error scheduling notification")
