"""
Business logic for host applications.

A guest applies to host with their contact details and the property
they want to list.  The application waits as ``pending`` until an
administrator approves or rejects it; both outcomes notify the
applicant in-app.  While the ``require_host_verification`` setting is
on, guests cannot create listings or register a payout account until
they hold an approved application.
"""

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from enatbet_api.app.core.db import get_connection, transaction
from enatbet_api.app.schemas.user import HostApplicationCreate, HostApplicationRead
from enatbet_api.app.services.audit_service import AuditService
from enatbet_api.app.services.errors import ConflictError, NotFoundError, PermissionDeniedError
from enatbet_api.app.services.notification_service import add_notification
from enatbet_api.app.services.settings_service import read_platform_settings
from enatbet_api.app.utils.dates import now_timestamp

logger = logging.getLogger(__name__)


def promote_to_host(conn: sqlite3.Connection, user_id: int, caller_role: Optional[str] = None) -> None:
    """Give a guest the host role, enforcing host verification when it is switched on.

    Hosts and admins keep their role; ``caller_role`` is the role from the
    request's token, which makes administrators exempt.  Raises
    ``PermissionDeniedError`` for a guest without an approved application.
    """
    if caller_role == "admin":
        return
    user = conn.execute("SELECT role FROM users WHERE id = ?", (user_id,)).fetchone()
    if not user:
        raise NotFoundError(f"User {user_id} not found")
    if user["role"] != "guest":
        return
    if read_platform_settings(conn).require_host_verification:
        approved = conn.execute(
            "SELECT 1 FROM host_applications WHERE user_id = ? AND status = 'approved' LIMIT 1", (user_id,)
        ).fetchone()
        if not approved:
            raise PermissionDeniedError("An approved host application is required to start hosting")
    conn.execute(
        "UPDATE users SET role = 'host', updated_at = ? WHERE id = ? AND role = 'guest'",
        (now_timestamp(), user_id),
    )


class HostApplicationService:
    """Service for applying to host and reviewing applications."""

    @classmethod
    async def apply(cls, data: HostApplicationCreate, current_user: Dict[str, Any]) -> HostApplicationRead:
        user_id = current_user["user_id"]
        email = (data.email or current_user.get("email") or "").strip().lower()
        if not email:
            raise ValueError("An email address is required")
        if current_user.get("role") != "guest":
            raise ConflictError("You can already host")
        with transaction() as conn:
            if conn.execute(
                "SELECT 1 FROM host_applications WHERE user_id = ? AND status = 'pending'", (user_id,)
            ).fetchone():
                raise ConflictError("You already have an application under review")
            cursor = conn.execute(
                """
                INSERT INTO host_applications (user_id, full_name, email, phone, property_city,
                                               property_type, message)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (user_id, data.full_name, email, data.phone, data.property_city, data.property_type, data.message),
            )
            application_id = cursor.lastrowid
            add_notification(
                conn, user_id, "host_application_received", "Application received",
                "We will review your application and get back to you.",
                {"application_id": application_id},
            )
            row = conn.execute("SELECT * FROM host_applications WHERE id = ?", (application_id,)).fetchone()
        logger.info("User %s applied to host (application %s)", user_id, application_id)
        await AuditService.record(
            user_id=user_id, action="apply", object_type="host_application", object_id=application_id
        )
        return HostApplicationRead(**dict(row))

    @classmethod
    async def latest_for_user(cls, user_id: int) -> HostApplicationRead:
        conn = get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM host_applications WHERE user_id = ? ORDER BY id DESC LIMIT 1", (user_id,)
            ).fetchone()
        finally:
            conn.close()
        if not row:
            raise NotFoundError("No host application found")
        return HostApplicationRead(**dict(row))

    @classmethod
    async def list_applications(
        cls, status: Optional[str] = None, limit: int = 50, offset: int = 0
    ) -> List[HostApplicationRead]:
        query = "SELECT * FROM host_applications"
        params: List[Any] = []
        if status:
            query += " WHERE status = ?"
            params.append(status)
        query += " ORDER BY created_at ASC, id ASC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        conn = get_connection()
        try:
            return [HostApplicationRead(**dict(row)) for row in conn.execute(query, tuple(params)).fetchall()]
        finally:
            conn.close()

    @classmethod
    async def review(
        cls, application_id: int, approve: bool, admin_id: int, reason: Optional[str] = None
    ) -> HostApplicationRead:
        """Approve (promoting the applicant to host) or reject a pending application."""
        new_status = "approved" if approve else "rejected"
        now = now_timestamp()
        with transaction() as conn:
            application = conn.execute(
                "SELECT * FROM host_applications WHERE id = ?", (application_id,)
            ).fetchone()
            if not application:
                raise NotFoundError(f"Host application {application_id} not found")
            if application["status"] != "pending":
                raise ConflictError(f"Application is already {application['status']}")
            conn.execute(
                """
                UPDATE host_applications
                   SET status = ?, rejection_reason = ?, reviewed_by = ?, reviewed_at = ?, updated_at = ?
                 WHERE id = ?
                """,
                (new_status, None if approve else reason, admin_id, now, now, application_id),
            )
            data = {"application_id": application_id}
            if approve:
                promote_to_host(conn, application["user_id"])
                add_notification(
                    conn, application["user_id"], "host_application_approved", "You can start hosting",
                    "Your host application has been approved. You can now list your property.", data,
                )
            else:
                add_notification(
                    conn, application["user_id"], "host_application_rejected",
                    "Your host application was not approved", reason, data,
                )
            row = conn.execute("SELECT * FROM host_applications WHERE id = ?", (application_id,)).fetchone()
        logger.info("Admin %s set host application %s to %s", admin_id, application_id, new_status)
        await AuditService.record(
            user_id=admin_id, action="approve" if approve else "reject", object_type="host_application",
            object_id=application_id, details={"reason": reason} if reason else None,
        )
        return HostApplicationRead(**dict(row))
