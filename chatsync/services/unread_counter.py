"""Per-recipient unread tallies for conversations.

The conversation summary (last message fields, ``unread_counters`` and the
``read`` flag) is a projection of the message log. It is rebuilt from the log
rather than incremented in place, so re-running it is harmless and a summary
left stale by a failed write is repaired by the next projection.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.message_repository import MessageRepository


logger = logging.getLogger(__name__)


def unread_for(conversation: Dict[str, Any], user_id: str) -> int:
    """Messages in ``conversation`` that ``user_id`` has not read yet."""
    counters = conversation.get("unread_counters") or {}
    return int(counters.get(user_id, 0) or 0)


class UnreadCounter:

    def __init__(self, message_repo: MessageRepository, conversation_repo: ConversationRepository) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo

    async def record_message(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        conversation = await self._conversation_repo.get(conversation_id)
        if conversation is None:
            logger.warning("Cannot project summary for missing conversation %s", conversation_id)
            return None

        counters = {}
        for participant in conversation.get("participants", []):
            counters[participant] = await self._message_repo.count_unread(conversation_id, participant)

        summary: Dict[str, Any] = {"unread_counters": counters}
        latest = await self._message_repo.latest(conversation_id)
        if latest is not None:
            recipients = [p for p in counters if p != latest["sender_id"]]
            summary.update({
                "last_message": latest["text"],
                "last_message_sender": latest["sender_id"],
                "last_message_at": latest["timestamp"],
                "read": all(counters[p] == 0 for p in recipients),
            })
        return await self._conversation_repo.apply_summary(conversation_id, summary)

    async def mark_read(self, conversation_id: str, reader_id: str, up_to: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        marked = await self._message_repo.mark_read_up_to(conversation_id, reader_id, up_to)
        remaining = 0
        if up_to is not None:
            remaining = await self._message_repo.count_unread(conversation_id, reader_id)
        logger.debug("Marked %s messages read in %s for %s", marked, conversation_id, reader_id)
        conversation = await self._conversation_repo.get(conversation_id)
        if conversation is None:
            logger.warning("Cannot reset unread count of missing conversation %s", conversation_id)
            return None
        read = None
        sender = conversation.get("last_message_sender")
        if sender is not None and sender != reader_id:
            read = remaining == 0
        return await self._conversation_repo.reset_unread(conversation_id, reader_id, remaining, read)
