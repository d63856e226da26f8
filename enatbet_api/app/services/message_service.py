"""
Business logic for guest/host messaging.

A conversation is between two users about one listing.  Sending a
message either appends to a conversation the sender takes part in or
finds/starts the conversation with ``recipient_id`` about
``listing_id``.  Each participant row keeps its own unread counter.
"""

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from enatbet_api.app.core.db import get_connection, transaction
from enatbet_api.app.schemas.message import ConversationRead, MessageCreate, MessageRead, MessageSent
from enatbet_api.app.services.errors import NotFoundError, PermissionDeniedError
from enatbet_api.app.services.notification_service import add_notification
from enatbet_api.app.utils.dates import now_timestamp

logger = logging.getLogger(__name__)

MESSAGE_PAGE_SIZE = 50
PREVIEW_LENGTH = 100


def _participants(conn: sqlite3.Connection, conversation_id: int) -> List[int]:
    rows = conn.execute(
        "SELECT user_id FROM conversation_participants WHERE conversation_id = ? ORDER BY user_id",
        (conversation_id,),
    ).fetchall()
    return [row["user_id"] for row in rows]


def _require_participant(conn: sqlite3.Connection, conversation_id: int, user_id: int) -> List[int]:
    if not conn.execute("SELECT 1 FROM conversations WHERE id = ?", (conversation_id,)).fetchone():
        raise NotFoundError(f"Conversation {conversation_id} not found")
    participants = _participants(conn, conversation_id)
    if user_id not in participants:
        raise PermissionDeniedError("You are not part of this conversation")
    return participants


def _find_or_start(conn: sqlite3.Connection, sender_id: int, data: MessageCreate) -> int:
    if data.recipient_id is None or data.listing_id is None:
        raise ValueError("Either conversation_id or recipient_id and listing_id are required")
    if data.recipient_id == sender_id:
        raise ValueError("You cannot message yourself")
    if not conn.execute("SELECT 1 FROM users WHERE id = ?", (data.recipient_id,)).fetchone():
        raise NotFoundError(f"User {data.recipient_id} not found")
    listing = conn.execute("SELECT host_id FROM listings WHERE id = ?", (data.listing_id,)).fetchone()
    if not listing:
        raise NotFoundError(f"Listing {data.listing_id} not found")
    if listing["host_id"] not in (sender_id, data.recipient_id):
        raise ValueError("Conversations about a listing must include its host")
    if data.booking_id is not None:
        booking = conn.execute(
            "SELECT listing_id, guest_id, host_id FROM bookings WHERE id = ?", (data.booking_id,)
        ).fetchone()
        if not booking:
            raise NotFoundError(f"Booking {data.booking_id} not found")
        if {booking["guest_id"], booking["host_id"]} != {sender_id, data.recipient_id}:
            raise PermissionDeniedError("This booking is not between you and the recipient")
        if booking["listing_id"] != data.listing_id:
            raise ValueError("The booking is for a different listing")

    row = conn.execute(
        """
        SELECT c.id FROM conversations c
          JOIN conversation_participants a ON a.conversation_id = c.id AND a.user_id = ?
          JOIN conversation_participants b ON b.conversation_id = c.id AND b.user_id = ?
         WHERE c.listing_id = ?
         ORDER BY c.id LIMIT 1
        """,
        (sender_id, data.recipient_id, data.listing_id),
    ).fetchone()
    if row:
        return row["id"]
    cursor = conn.execute(
        "INSERT INTO conversations (listing_id, booking_id) VALUES (?, ?)",
        (data.listing_id, data.booking_id),
    )
    conversation_id = cursor.lastrowid
    conn.executemany(
        "INSERT INTO conversation_participants (conversation_id, user_id) VALUES (?, ?)",
        [(conversation_id, sender_id), (conversation_id, data.recipient_id)],
    )
    logger.info("Conversation %s started by user %s", conversation_id, sender_id)
    return conversation_id


class MessageService:
    """Service for conversations and messages."""

    @classmethod
    async def send_message(cls, data: MessageCreate, current_user: Dict[str, Any]) -> MessageSent:
        sender_id = current_user["user_id"]
        with transaction() as conn:
            if data.conversation_id is not None:
                conversation_id = data.conversation_id
                participants = _require_participant(conn, conversation_id, sender_id)
            else:
                conversation_id = _find_or_start(conn, sender_id, data)
                participants = _participants(conn, conversation_id)

            now = now_timestamp()
            cursor = conn.execute(
                "INSERT INTO messages (conversation_id, sender_id, content, created_at) VALUES (?, ?, ?, ?)",
                (conversation_id, sender_id, data.content, now),
            )
            conn.execute(
                """
                UPDATE conversations
                   SET last_message = ?, last_message_at = ?, last_sender_id = ?, updated_at = ?
                 WHERE id = ?
                """,
                (data.content[:PREVIEW_LENGTH], now, sender_id, now, conversation_id),
            )
            conn.execute(
                "UPDATE conversation_participants SET unread_count = unread_count + 1"
                " WHERE conversation_id = ? AND user_id != ?",
                (conversation_id, sender_id),
            )
            for recipient_id in participants:
                if recipient_id != sender_id:
                    add_notification(
                        conn, recipient_id, "new_message", "New message",
                        data.content[:PREVIEW_LENGTH], {"conversation_id": conversation_id},
                    )
            message_id = cursor.lastrowid
        return MessageSent(message_id=message_id, conversation_id=conversation_id)

    @classmethod
    async def list_conversations(
        cls, current_user: Dict[str, Any], limit: int = 50, offset: int = 0
    ) -> List[ConversationRead]:
        """Conversations of the caller, most recently active first."""
        user_id = current_user["user_id"]
        conn = get_connection()
        try:
            rows = conn.execute(
                """
                SELECT c.*, p.unread_count FROM conversations c
                  JOIN conversation_participants p ON p.conversation_id = c.id AND p.user_id = ?
                 ORDER BY c.updated_at DESC, c.id DESC LIMIT ? OFFSET ?
                """,
                (user_id, limit, offset),
            ).fetchall()
            return [
                ConversationRead(
                    id=row["id"],
                    listing_id=row["listing_id"],
                    booking_id=row["booking_id"],
                    participant_ids=_participants(conn, row["id"]),
                    last_message=row["last_message"],
                    last_message_at=row["last_message_at"],
                    last_sender_id=row["last_sender_id"],
                    unread_count=row["unread_count"],
                    updated_at=row["updated_at"],
                )
                for row in rows
            ]
        finally:
            conn.close()

    @classmethod
    async def list_messages(
        cls,
        conversation_id: int,
        current_user: Dict[str, Any],
        limit: int = MESSAGE_PAGE_SIZE,
        before_id: Optional[int] = None,
    ) -> List[MessageRead]:
        """Return up to ``limit`` messages, oldest first.

        ``before_id`` pages backwards through older history.
        """
        conn = get_connection()
        try:
            _require_participant(conn, conversation_id, current_user["user_id"])
            query = "SELECT * FROM messages WHERE conversation_id = ?"
            params: List[Any] = [conversation_id]
            if before_id is not None:
                query += " AND id < ?"
                params.append(before_id)
            query += " ORDER BY id DESC LIMIT ?"
            params.append(limit)
            rows = conn.execute(query, tuple(params)).fetchall()
            return [MessageRead(**dict(row)) for row in reversed(rows)]
        finally:
            conn.close()

    @classmethod
    async def mark_read(cls, conversation_id: int, current_user: Dict[str, Any]) -> None:
        user_id = current_user["user_id"]
        with transaction() as conn:
            _require_participant(conn, conversation_id, user_id)
            conn.execute(
                "UPDATE conversation_participants SET unread_count = 0, last_read_at = ?"
                " WHERE conversation_id = ? AND user_id = ?",
                (now_timestamp(), conversation_id, user_id),
            )
