from datetime import datetime
from typing import TypedDict


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    sender_id: str
    text: str
    timestamp: datetime
    # set once the non-sender has seen it
    read: bool
