import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from chatsync.exceptions import ConversationAccessError, ConversationNotFound, SelfConversationError
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.schemas.chat import ConversationView, StartConversation
from chatsync.services.conversation_list_sync import (
    is_unread_for,
    matches_query,
    other_participant,
    other_participant_name,
)
from chatsync.services.unread_counter import UnreadCounter, unread_for
from chatsync.utils.format_date import format_timestamp


logger = logging.getLogger(__name__)


class ChatService:

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        unread_counter: Optional[UnreadCounter] = None,
        max_length: int = 500,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._unread_counter = unread_counter or UnreadCounter(message_repo, conversation_repo)
        self._max_length = max_length

    @property
    def unread_counter(self) -> UnreadCounter:
        return self._unread_counter

    async def start_conversation(self, requester_id: str, payload: StartConversation) -> Dict[str, Any]:
        if requester_id == payload.provider_id:
            raise SelfConversationError("This is your own service listing")
        images = {}
        if payload.requester_image:
            images[requester_id] = payload.requester_image
        if payload.provider_image:
            images[payload.provider_id] = payload.provider_image
        convo = await self._conversation_repo.get_or_create(
            participants=[requester_id, payload.provider_id],
            participant_names={requester_id: payload.requester_name, payload.provider_id: payload.provider_name},
            participant_images=images,
            service_id=payload.service_id,
            service_title=payload.service_title,
        )
        logger.info("Conversation %s ready for service %s", convo["_id"], payload.service_id)
        return convo

    async def get_conversation(self, conversation_id: str, user_id: str) -> Dict[str, Any]:
        convo = await self._conversation_repo.get(conversation_id)
        if convo is None:
            raise ConversationNotFound(f"Conversation {conversation_id} not found")
        if user_id not in convo.get("participants", []):
            raise ConversationAccessError("You are not a participant of this conversation")
        return convo

    async def list_conversations(self, user_id: str, limit: int = 20, cursor: Optional[str] = None):
        return await self._conversation_repo.list_for_user(user_id, limit=limit, cursor=cursor)

    async def search_conversations(self, user_id: str, query: str) -> List[Dict[str, Any]]:
        items = await self._conversation_repo.snapshot_for_user(user_id)
        return [c for c in items if matches_query(c, user_id, query)]

    async def get_history(self, conversation_id: str, user_id: str, limit: int = 50, cursor: Optional[str] = None):
        await self.get_conversation(conversation_id, user_id)
        return await self._message_repo.get_messages_by_conversation(conversation_id, limit=limit, cursor=cursor)

    async def send_message(self, conversation_id: str, sender_id: str, text: str) -> Dict[str, Any]:
        if not text or not text.strip():
            raise ValueError("Message content cannot be empty")
        convo = await self.get_conversation(conversation_id, sender_id)
        if other_participant(convo, sender_id) is None:
            raise ValueError("Conversation has no recipient")
        saved = await self._message_repo.append(conversation_id, sender_id, text.strip()[:self._max_length])
        await self._unread_counter.record_message(conversation_id)
        return saved

    async def mark_read(self, conversation_id: str, user_id: str, up_to: Optional[datetime] = None) -> Dict[str, Any]:
        await self.get_conversation(conversation_id, user_id)
        updated = await self._unread_counter.mark_read(conversation_id, user_id, up_to)
        if updated is None:
            raise ConversationNotFound(f"Conversation {conversation_id} not found")
        return updated

    @staticmethod
    def to_view(conversation: Dict[str, Any], user_id: str, now: Optional[datetime] = None) -> ConversationView:
        other = other_participant(conversation, user_id)
        images = conversation.get("participant_images") or {}
        last_at = conversation.get("last_message_at")
        return ConversationView(
            id=conversation["_id"],
            other_participant_id=other,
            other_participant_name=other_participant_name(conversation, user_id),
            other_participant_image=images.get(other) if other else None,
            service_id=conversation.get("service_id", ""),
            service_title=conversation.get("service_title", ""),
            last_message=conversation.get("last_message"),
            last_message_from_me=conversation.get("last_message_sender") == user_id,
            last_message_at=last_at,
            last_message_relative=format_timestamp(last_at, now),
            unread_count=unread_for(conversation, user_id),
            unread=is_unread_for(conversation, user_id),
        )
