import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from chatsync.schemas.chat import ThreadRow
from chatsync.services.thread_layout import GROUPING_WINDOW, build_rows
from chatsync.services.unread_counter import UnreadCounter
from chatsync.utils.live_query import LiveQuery
from chatsync.utils.realtime_bus import messages_channel


logger = logging.getLogger(__name__)

DEFAULT_MAX_LENGTH = 500


class MessageThreadSync:
    """Ordered message history of one conversation, plus sending.

    Sent messages are not inserted locally; they show up once the
    subscription echoes them back.
    """

    def __init__(
        self,
        conversation_id: Optional[str],
        user_id: Optional[str],
        recipient_id: Optional[str],
        message_repo,
        unread_counter: UnreadCounter,
        bus,
        on_change: Optional[Callable[[List[Dict[str, Any]]], Awaitable[None]]] = None,
        max_length: int = DEFAULT_MAX_LENGTH,
        grouping_window: timedelta = GROUPING_WINDOW,
    ) -> None:
        self._conversation_id = conversation_id
        self._user_id = user_id
        self._recipient_id = recipient_id
        self._message_repo = message_repo
        self._unread_counter = unread_counter
        self._bus = bus
        self._on_change = on_change
        self._max_length = max_length
        self._grouping_window = grouping_window
        self._messages: List[Dict[str, Any]] = []
        self._live_query: Optional[LiveQuery] = None
        self.draft = ""
        self.last_error: Optional[Exception] = None

    @property
    def conversation_id(self) -> Optional[str]:
        return self._conversation_id

    @property
    def messages(self) -> List[Dict[str, Any]]:
        return list(self._messages)

    @property
    def can_send(self) -> bool:
        return bool(self._conversation_id and self._user_id and self._recipient_id)

    async def start(self) -> None:
        if not self._conversation_id or not self._user_id:
            logger.info("Thread sync needs a conversation and a user, not subscribing")
            return
        if self._live_query is None:
            self._live_query = LiveQuery(
                self._bus,
                messages_channel(self._conversation_id),
                fetch=lambda: self._message_repo.snapshot_for_conversation(self._conversation_id),
                on_snapshot=self._apply_snapshot,
                on_error=self._on_error,
            )
        await self._live_query.start()

    async def stop(self) -> None:
        if self._live_query is not None:
            await self._live_query.stop()

    def rows(self, **kwargs) -> List[ThreadRow]:
        kwargs.setdefault("window", self._grouping_window)
        return build_rows(self._messages, self._user_id, **kwargs)

    async def send(self, text: Optional[str] = None) -> Optional[Dict[str, Any]]:
        body = (self.draft if text is None else text).strip()
        if not body or not self.can_send:
            return None
        body = body[:self._max_length]
        # input clears right away; the message appears once echoed back
        self.draft = ""
        try:
            message = await self._message_repo.append(self._conversation_id, self._user_id, body)
        except Exception:
            logger.exception("Error sending message to %s", self._conversation_id)
            return None
        try:
            await self._unread_counter.record_message(self._conversation_id)
        except Exception:
            # summary catches up on the next projection
            logger.exception("Error updating summary of %s", self._conversation_id)
        return message

    async def _apply_snapshot(self, docs: List[Dict[str, Any]]) -> None:
        self._messages = list(docs)
        self.last_error = None
        if self._on_change is not None:
            await self._on_change(self.messages)
        await self._mark_incoming_read()

    async def _mark_incoming_read(self) -> None:
        incoming = [
            m for m in self._messages
            if m.get("sender_id") != self._user_id and not m.get("read")
        ]
        if not incoming:
            return
        stamps = [m["timestamp"] for m in incoming if m.get("timestamp") is not None]
        up_to = max(stamps) if stamps else None
        try:
            await self._unread_counter.mark_read(self._conversation_id, self._user_id, up_to)
        except Exception:
            logger.exception("Error marking messages as read in %s", self._conversation_id)

    async def _on_error(self, exc: Exception) -> None:
        self.last_error = exc
        logger.warning("Keeping last known messages for %s", self._conversation_id)
