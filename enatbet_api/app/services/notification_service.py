"""
In-app notifications.

Other services add notifications inside their own transactions with
``add_notification`` so that a notification exists exactly when the
change it announces was committed.  Users read and acknowledge them
through ``NotificationService``.
"""

import json
import sqlite3
from typing import Any, Dict, List, Optional

from enatbet_api.app.core.db import get_connection
from enatbet_api.app.schemas.message import NotificationRead
from enatbet_api.app.services.errors import NotFoundError


def add_notification(
    conn: sqlite3.Connection,
    user_id: int,
    type_: str,
    title: str,
    body: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
) -> int:
    cursor = conn.execute(
        "INSERT INTO notifications (user_id, type, title, body, data) VALUES (?, ?, ?, ?, ?)",
        (user_id, type_, title, body, json.dumps(data) if data else None),
    )
    return cursor.lastrowid


def _to_read(row: sqlite3.Row) -> NotificationRead:
    return NotificationRead(
        id=row["id"],
        type=row["type"],
        title=row["title"],
        body=row["body"],
        data=json.loads(row["data"]) if row["data"] else None,
        is_read=bool(row["is_read"]),
        created_at=row["created_at"],
    )


class NotificationService:
    @classmethod
    async def list_notifications(
        cls, user_id: int, unread_only: bool = False, limit: int = 50, offset: int = 0
    ) -> List[NotificationRead]:
        conn = get_connection()
        try:
            query = "SELECT * FROM notifications WHERE user_id = ?"
            if unread_only:
                query += " AND is_read = 0"
            query += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
            rows = conn.execute(query, (user_id, limit, offset)).fetchall()
            return [_to_read(row) for row in rows]
        finally:
            conn.close()

    @classmethod
    async def mark_read(cls, user_id: int, notification_id: int) -> NotificationRead:
        conn = get_connection()
        try:
            cursor = conn.execute(
                "UPDATE notifications SET is_read = 1 WHERE id = ? AND user_id = ?",
                (notification_id, user_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Notification {notification_id} not found")
            conn.commit()
            row = conn.execute("SELECT * FROM notifications WHERE id = ?", (notification_id,)).fetchone()
            return _to_read(row)
        finally:
            conn.close()

    @classmethod
    async def mark_all_read(cls, user_id: int) -> int:
        conn = get_connection()
        try:
            cursor = conn.execute(
                "UPDATE notifications SET is_read = 1 WHERE user_id = ? AND is_read = 0", (user_id,)
            )
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()
