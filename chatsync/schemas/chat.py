from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field


class StartConversation(BaseModel):

    provider_id: str
    provider_name: str
    service_id: str
    service_title: str
    requester_name: str
    provider_image: Optional[str] = None
    requester_image: Optional[str] = None


class SendMessage(BaseModel):

    text: str = Field(min_length=1)


class MarkRead(BaseModel):

    up_to: Optional[datetime] = None


class DeviceRegistration(BaseModel):

    platform: str = "fcm"
    token: str = Field(min_length=1)


class ConversationView(BaseModel):
    """A conversation as seen by one participant."""

    id: str
    other_participant_id: Optional[str] = None
    other_participant_name: str = ""
    other_participant_image: Optional[str] = None
    service_id: str
    service_title: str
    last_message: Optional[str] = None
    last_message_from_me: bool = False
    last_message_at: Optional[datetime] = None
    last_message_relative: str = ""
    unread_count: int = 0
    unread: bool = False


class ThreadRow(BaseModel):
    """One rendered message in a thread."""

    id: str
    text: str
    sender_id: str
    timestamp: Optional[datetime] = None
    is_from_me: bool
    show_avatar: bool
    show_date_separator: bool
    date_label: str = ""
    time_label: str = ""
    read_receipt: bool = False
