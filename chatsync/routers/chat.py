import json
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

import jwt
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

from chatsync.config import get_settings
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.services.chat_service import ChatService
from chatsync.services.conversation_list_sync import ConversationListSync, matches_query, other_participant
from chatsync.services.message_thread_sync import MessageThreadSync
from chatsync.services.unread_counter import UnreadCounter
from chatsync.utils.dependencies import (
    get_bus_dependency,
    get_conversation_repository,
    get_message_repository,
    get_notifier,
)
from chatsync.utils.notifications import Notifier
from chatsync.utils.security import decode_access_token


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["chat"])


async def _authenticate(websocket: WebSocket) -> Optional[str]:
    # token comes as ?token=..., browsers can't set headers on websockets
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4401)
        return None
    try:
        payload = decode_access_token(token)
    except jwt.PyJWTError as exc:
        logger.info("Rejected websocket: %s", exc)
        await websocket.close(code=4401)
        return None
    return payload["sub"]


async def _receive_json(websocket: WebSocket) -> Optional[Dict[str, Any]]:
    data = await websocket.receive_text()
    try:
        msg = json.loads(data)
    except ValueError:
        msg = None
    if not isinstance(msg, dict):
        await websocket.send_text(json.dumps({"type": "error", "detail": "Invalid message payload"}))
        return None
    return msg


@router.websocket("/conversations")
async def conversations_socket(
    websocket: WebSocket,
    conversation_repo: ConversationRepository = Depends(get_conversation_repository),
    message_repo: MessageRepository = Depends(get_message_repository),
    bus=Depends(get_bus_dependency),
    notifier: Notifier = Depends(get_notifier),
):
    user_id = await _authenticate(websocket)
    if not user_id:
        return
    await websocket.accept()

    counter = UnreadCounter(message_repo, conversation_repo)
    search = {"query": ""}

    async def push(conversations: List[Dict[str, Any]]) -> None:
        items = [c for c in conversations if matches_query(c, user_id, search["query"])]
        views = [ChatService.to_view(c, user_id) for c in items]
        await websocket.send_text(json.dumps({"type": "conversations", "items": jsonable_encoder(views)}))

    sync = ConversationListSync(
        user_id,
        conversation_repo,
        bus,
        counter,
        notifier=notifier.for_socket(websocket.send_text),
        on_change=push,
    )
    try:
        await sync.start()
        while True:
            msg = await _receive_json(websocket)
            if msg is None:
                continue
            kind = msg.get("type")
            if kind == "search":
                search["query"] = str(msg.get("query") or "")
                await push(sync.conversations)
            elif kind == "mark_read" and msg.get("conversation_id"):
                ok = await sync.mark_read(str(msg["conversation_id"]))
                await websocket.send_text(json.dumps({"type": "mark_read", "conversation_id": msg["conversation_id"], "ok": ok}))
            elif kind == "refresh":
                await sync.refresh()
            else:
                await websocket.send_text(json.dumps({"type": "error", "detail": "Unknown message type"}))
    except WebSocketDisconnect:
        logger.debug("Conversation list socket closed for %s", user_id)
    finally:
        await sync.stop()


@router.websocket("/chat/{conversation_id}")
async def thread_socket(
    websocket: WebSocket,
    conversation_id: str,
    conversation_repo: ConversationRepository = Depends(get_conversation_repository),
    message_repo: MessageRepository = Depends(get_message_repository),
    bus=Depends(get_bus_dependency),
):
    user_id = await _authenticate(websocket)
    if not user_id:
        return
    convo = await conversation_repo.get(conversation_id)
    if convo is None or user_id not in convo.get("participants", []):
        await websocket.close(code=4403)
        return
    recipient_id = websocket.query_params.get("recipient_id") or other_participant(convo, user_id)
    if recipient_id not in convo["participants"] or recipient_id == user_id:
        await websocket.close(code=4403)
        return

    await websocket.accept()

    settings = get_settings()

    async def push(messages: List[Dict[str, Any]]) -> None:
        rows = sync.rows()
        await websocket.send_text(json.dumps({
            "type": "messages",
            "conversation_id": conversation_id,
            "rows": jsonable_encoder(rows),
        }))

    sync = MessageThreadSync(
        conversation_id,
        user_id,
        recipient_id,
        message_repo,
        UnreadCounter(message_repo, conversation_repo),
        bus,
        on_change=push,
        max_length=settings.message_max_length,
        grouping_window=timedelta(seconds=settings.grouping_window_seconds),
    )
    try:
        await sync.start()
        while True:
            msg = await _receive_json(websocket)
            if msg is None:
                continue
            kind = msg.get("type")
            if kind == "draft":
                sync.draft = str(msg.get("text") or "")
            elif kind == "send":
                text = msg.get("text")
                saved = await sync.send(None if text is None else str(text))
                await websocket.send_text(json.dumps({
                    "type": "ack",
                    "ok": saved is not None,
                    "message_id": saved["_id"] if saved else None,
                    "client_message_id": msg.get("client_message_id"),
                }))
            else:
                await websocket.send_text(json.dumps({"type": "error", "detail": "Unknown message type"}))
    except WebSocketDisconnect:
        logger.debug("Thread socket closed for %s in %s", user_id, conversation_id)
    finally:
        await sync.stop()
