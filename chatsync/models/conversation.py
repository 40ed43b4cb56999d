from datetime import datetime
from typing import Dict, List, Optional, TypedDict


class ConversationDocument(TypedDict, total=False):
    _id: str
    participants: List[str]
    # denormalized at creation, never re-synced with profiles
    participant_names: Dict[str, str]
    participant_images: Dict[str, str]
    service_id: str
    service_title: str
    # summary of the newest message
    last_message: Optional[str]
    last_message_sender: Optional[str]
    last_message_at: datetime
    # per-recipient unread counters (user_id -> count)
    unread_counters: Dict[str, int]
    read: bool
    created_at: datetime
