import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from chatsync.database.connection import mongo_db_dependency
from chatsync.config import get_settings
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.device_repository import DeviceRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.repositories.notification_marker_repository import NotificationMarkerRepository
from chatsync.services.chat_service import ChatService
from chatsync.utils.notifications import Notifier, get_push
from chatsync.utils.realtime_bus import get_bus
from chatsync.utils.security import decode_access_token


bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme)) -> dict:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        payload = decode_access_token(credentials.credentials)
    except jwt.PyJWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        )
    return {"_id": payload["sub"]}


def get_bus_dependency():
    return get_bus()


def get_conversation_repository(db=Depends(mongo_db_dependency), bus=Depends(get_bus_dependency)) -> ConversationRepository:
    return ConversationRepository(db, bus)


def get_message_repository(db=Depends(mongo_db_dependency), bus=Depends(get_bus_dependency)) -> MessageRepository:
    return MessageRepository(db, bus)


def get_device_repository(db=Depends(mongo_db_dependency)) -> DeviceRepository:
    return DeviceRepository(db)


def get_chat_service(
    message_repo=Depends(get_message_repository),
    conversation_repo=Depends(get_conversation_repository),
) -> ChatService:
    return ChatService(message_repo, conversation_repo, max_length=get_settings().message_max_length)


def get_notifier(db=Depends(mongo_db_dependency), devices=Depends(get_device_repository)) -> Notifier:
    return Notifier(push=get_push(), device_repo=devices, markers=NotificationMarkerRepository(db))
