from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.encoders import jsonable_encoder

from chatsync.exceptions import ChatSyncError, ConversationAccessError, ConversationNotFound, SelfConversationError
from chatsync.schemas.chat import MarkRead, SendMessage, StartConversation
from chatsync.services.chat_service import ChatService
from chatsync.utils.dependencies import get_chat_service, get_current_user


router = APIRouter(prefix="/conversations", tags=["chat"])


def _raise_http(exc: Exception):
    if isinstance(exc, ConversationNotFound):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ConversationAccessError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.get("")
async def list_conversations(limit: int = Query(20, ge=1, le=100), cursor: Optional[str] = None, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    try:
        items, next_cursor = await service.list_conversations(current_user["_id"], limit=limit, cursor=cursor)
    except ValueError as exc:
        _raise_http(exc)
    views = [service.to_view(c, current_user["_id"]) for c in items]
    return {"items": jsonable_encoder(views), "next_cursor": next_cursor}


@router.get("/search")
async def search_conversations(q: str = "", current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    items = await service.search_conversations(current_user["_id"], q)
    return {"items": jsonable_encoder([service.to_view(c, current_user["_id"]) for c in items])}


@router.post("", status_code=status.HTTP_201_CREATED)
async def start_conversation(body: StartConversation, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    try:
        convo = await service.start_conversation(current_user["_id"], body)
    except SelfConversationError as exc:
        _raise_http(exc)
    return jsonable_encoder(service.to_view(convo, current_user["_id"]))


@router.get("/{conversation_id}")
async def get_conversation(conversation_id: str, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    try:
        convo = await service.get_conversation(conversation_id, current_user["_id"])
    except ChatSyncError as exc:
        _raise_http(exc)
    return jsonable_encoder(convo)


@router.get("/{conversation_id}/messages")
async def list_messages(conversation_id: str, limit: int = Query(50, ge=1, le=200), cursor: Optional[str] = None, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    try:
        messages, next_cursor = await service.get_history(conversation_id, current_user["_id"], limit=limit, cursor=cursor)
    except (ChatSyncError, ValueError) as exc:
        _raise_http(exc)
    return {"items": jsonable_encoder(messages), "next_cursor": next_cursor}


@router.post("/{conversation_id}/messages", status_code=status.HTTP_201_CREATED)
async def send_message(conversation_id: str, body: SendMessage, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    try:
        saved = await service.send_message(conversation_id, current_user["_id"], body.text)
    except (ChatSyncError, ValueError) as exc:
        _raise_http(exc)
    return jsonable_encoder(saved)


@router.post("/{conversation_id}/read")
async def mark_read(conversation_id: str, body: Optional[MarkRead] = None, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    up_to = body.up_to if body else None
    try:
        convo = await service.mark_read(conversation_id, current_user["_id"], up_to)
    except ChatSyncError as exc:
        _raise_http(exc)
    return jsonable_encoder(service.to_view(convo, current_user["_id"]))
