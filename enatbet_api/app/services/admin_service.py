"""
Admin alerts raised by payment processing.

Alerts are written by the webhook handlers (disputes, payments for
bookings that can no longer be honoured) and by failed refunds.  They
stay open until an administrator resolves them.
"""

import json
import logging
from typing import List, Optional

from enatbet_api.app.core.db import get_connection
from enatbet_api.app.schemas.admin import AdminAlertRead
from enatbet_api.app.services.audit_service import AuditService
from enatbet_api.app.services.errors import ConflictError, NotFoundError
from enatbet_api.app.utils.dates import now_timestamp

logger = logging.getLogger(__name__)


def _to_read(row) -> AdminAlertRead:
    data = dict(row)
    data["details"] = json.loads(data["details"]) if data["details"] else None
    data["resolved"] = bool(data["resolved"])
    return AdminAlertRead(**data)


class AdminService:
    @classmethod
    async def list_alerts(
        cls, resolved: Optional[bool] = None, limit: int = 50, offset: int = 0
    ) -> List[AdminAlertRead]:
        conn = get_connection()
        try:
            query = "SELECT * FROM admin_alerts"
            params: list = []
            if resolved is not None:
                query += " WHERE resolved = ?"
                params.append(int(resolved))
            query += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
            params.extend([limit, offset])
            return [_to_read(row) for row in conn.execute(query, tuple(params)).fetchall()]
        finally:
            conn.close()

    @classmethod
    async def resolve_alert(cls, alert_id: int, admin_id: int) -> AdminAlertRead:
        conn = get_connection()
        try:
            row = conn.execute("SELECT * FROM admin_alerts WHERE id = ?", (alert_id,)).fetchone()
            if not row:
                raise NotFoundError(f"Alert {alert_id} not found")
            if row["resolved"]:
                raise ConflictError("Alert is already resolved")
            conn.execute(
                "UPDATE admin_alerts SET resolved = 1, resolved_by = ?, resolved_at = ? WHERE id = ?",
                (admin_id, now_timestamp(), alert_id),
            )
            conn.commit()
            row = conn.execute("SELECT * FROM admin_alerts WHERE id = ?", (alert_id,)).fetchone()
        finally:
            conn.close()
        logger.info("Alert %s (%s) resolved by admin %s", alert_id, row["type"], admin_id)
        await AuditService.record(user_id=admin_id, action="resolve", object_type="alert", object_id=alert_id)
        return _to_read(row)
