"""
Pydantic schemas for messaging and in-app notifications.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

MAX_MESSAGE_LENGTH = 2000


class MessageCreate(BaseModel):
    """Send a message.

    Either ``conversation_id`` names an existing conversation, or
    ``recipient_id`` and ``listing_id`` identify the conversation to
    find or start.
    """

    conversation_id: Optional[int] = None
    recipient_id: Optional[int] = None
    listing_id: Optional[int] = None
    booking_id: Optional[int] = None
    content: str

    @field_validator("content")
    @classmethod
    def sanitize_content(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Message cannot be empty")
        if len(v) > MAX_MESSAGE_LENGTH:
            raise ValueError(f"Message must be {MAX_MESSAGE_LENGTH} characters or fewer")
        return v


class MessageSent(BaseModel):
    message_id: int
    conversation_id: int


class MessageRead(BaseModel):
    id: int
    conversation_id: int
    sender_id: int
    content: str
    created_at: str


class ConversationRead(BaseModel):
    id: int
    listing_id: Optional[int] = None
    booking_id: Optional[int] = None
    participant_ids: List[int]
    last_message: Optional[str] = None
    last_message_at: Optional[str] = None
    last_sender_id: Optional[int] = None
    unread_count: int = 0
    updated_at: Optional[str] = None


class NotificationRead(BaseModel):
    id: int
    type: str
    title: str
    body: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    is_read: bool = Field(False)
    created_at: str
