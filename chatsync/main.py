from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from chatsync.config import get_settings
from chatsync.database.connection import close_mongo_connection, connect_to_mongo, get_database
from chatsync.logging_config import configure_logging
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.repositories.notification_marker_repository import NotificationMarkerRepository
from chatsync.routers.chat import router as chat_router
from chatsync.routers.conversations import router as conversations_router
from chatsync.routers.devices import router as devices_router
from chatsync.utils.realtime_bus import close_bus, get_bus


@asynccontextmanager
async def lifespan(app: FastAPI):

    configure_logging(get_settings().log_level)
    await connect_to_mongo()
    db = get_database()
    await ConversationRepository(db).ensure_indexes()
    await MessageRepository(db).ensure_indexes()
    await NotificationMarkerRepository(db).ensure_indexes()
    get_bus()
    try:
        yield
    finally:
        await close_bus()
        await close_mongo_connection()


app = FastAPI(title="Conversation sync", lifespan=lifespan)


app.include_router(conversations_router)
app.include_router(chat_router)
app.include_router(devices_router)


@app.get("/")
async def root():
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run("chatsync.main:app", host="0.0.0.0", port=8000)
