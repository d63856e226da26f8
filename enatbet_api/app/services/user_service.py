"""
Business logic for user profiles, hosting opt-in and favorites.

Applying to host lives in ``host_application_service``.
"""

import logging
from typing import List, Optional

from enatbet_api.app.core.db import get_connection, transaction
from enatbet_api.app.schemas.listing import ListingRead
from enatbet_api.app.schemas.user import UserRead, UserUpdate
from enatbet_api.app.services.audit_service import AuditService
from enatbet_api.app.services.errors import NotFoundError
from enatbet_api.app.services.host_application_service import promote_to_host
from enatbet_api.app.services.listing_service import row_to_listing
from enatbet_api.app.utils.dates import now_timestamp

logger = logging.getLogger(__name__)

USER_COLUMNS = (
    "id, email, full_name, phone, photo_url, language, role, status, "
    "stripe_connect_account_id, created_at"
)


class UserService:
    """Service for user accounts."""

    @classmethod
    async def get_user(cls, user_id: int) -> UserRead:
        conn = get_connection()
        try:
            row = conn.execute(f"SELECT {USER_COLUMNS} FROM users WHERE id = ?", (user_id,)).fetchone()
            if not row:
                raise NotFoundError(f"User {user_id} not found")
            return UserRead(**dict(row))
        finally:
            conn.close()

    @classmethod
    async def update_profile(cls, user_id: int, data: UserUpdate) -> UserRead:
        changes = data.model_dump(exclude_none=True)
        if changes:
            assignments = ", ".join(f"{column} = ?" for column in changes)
            conn = get_connection()
            try:
                conn.execute(
                    f"UPDATE users SET {assignments}, updated_at = ? WHERE id = ?",
                    (*changes.values(), now_timestamp(), user_id),
                )
                conn.commit()
            finally:
                conn.close()
        return await cls.get_user(user_id)

    @classmethod
    async def become_host(
        cls, user_id: int, connect_account_id: Optional[str] = None, caller_role: Optional[str] = None
    ) -> UserRead:
        """Promote a guest to host, optionally recording their payout account.

        Admins keep their role; only the payout account is updated for them.
        Guests need an approved host application while host verification
        is required.
        """
        with transaction() as conn:
            promote_to_host(conn, user_id, caller_role)
            conn.execute(
                """
                UPDATE users
                   SET stripe_connect_account_id = COALESCE(?, stripe_connect_account_id),
                       updated_at = ?
                 WHERE id = ?
                """,
                (connect_account_id, now_timestamp(), user_id),
            )
        logger.info("User %s enabled hosting", user_id)
        await AuditService.record(user_id=user_id, action="become_host", object_type="user", object_id=user_id)
        return await cls.get_user(user_id)

    @classmethod
    async def list_users(cls, role: Optional[str] = None, limit: int = 50, offset: int = 0) -> List[UserRead]:
        conn = get_connection()
        try:
            query = f"SELECT {USER_COLUMNS} FROM users"
            params: list = []
            if role:
                query += " WHERE role = ?"
                params.append(role)
            query += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
            params.extend([limit, offset])
            return [UserRead(**dict(row)) for row in conn.execute(query, tuple(params)).fetchall()]
        finally:
            conn.close()

    @classmethod
    async def set_status(cls, user_id: int, status: str, admin_id: int) -> UserRead:
        if user_id == admin_id and status != "active":
            raise ValueError("Administrators cannot suspend themselves")
        conn = get_connection()
        try:
            cursor = conn.execute(
                "UPDATE users SET status = ?, updated_at = ? WHERE id = ?",
                (status, now_timestamp(), user_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"User {user_id} not found")
            conn.commit()
        finally:
            conn.close()
        logger.info("Admin %s set user %s status to %s", admin_id, user_id, status)
        await AuditService.record(
            user_id=admin_id, action="set_status", object_type="user", object_id=user_id,
            details={"status": status},
        )
        return await cls.get_user(user_id)

    # -- favorites ---------------------------------------------------------

    @classmethod
    async def list_favorites(cls, user_id: int) -> List[ListingRead]:
        conn = get_connection()
        try:
            rows = conn.execute(
                """
                SELECT l.* FROM favorites f
                  JOIN listings l ON l.id = f.listing_id
                 WHERE f.user_id = ?
                 ORDER BY f.created_at DESC
                """,
                (user_id,),
            ).fetchall()
            return [row_to_listing(row) for row in rows]
        finally:
            conn.close()

    @classmethod
    async def add_favorite(cls, user_id: int, listing_id: int) -> None:
        conn = get_connection()
        try:
            if not conn.execute("SELECT 1 FROM listings WHERE id = ?", (listing_id,)).fetchone():
                raise NotFoundError(f"Listing {listing_id} not found")
            conn.execute(
                "INSERT OR IGNORE INTO favorites (user_id, listing_id) VALUES (?, ?)",
                (user_id, listing_id),
            )
            conn.commit()
        finally:
            conn.close()

    @classmethod
    async def remove_favorite(cls, user_id: int, listing_id: int) -> None:
        conn = get_connection()
        try:
            conn.execute(
                "DELETE FROM favorites WHERE user_id = ? AND listing_id = ?", (user_id, listing_id)
            )
            conn.commit()
        finally:
            conn.close()
