"""
Periodic booking housekeeping.

Run by an external scheduler through ``GET /api/v1/cron/cleanup-bookings``
or from the command line with ``cleanup_bookings.py``.  Each step
works on a bounded batch so one run never holds the write lock for
long; a backlog is drained by subsequent runs.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from enatbet_api.app.core.config import settings
from enatbet_api.app.core.db import transaction
from enatbet_api.app.schemas.admin import CleanupResult
from enatbet_api.app.services.audit_service import AuditService
from enatbet_api.app.services.notification_service import add_notification
from enatbet_api.app.utils.dates import format_date, format_timestamp, utc_now

logger = logging.getLogger(__name__)

EXPIRED_HOLD_BATCH = 100
STALE_PAYMENT_BATCH = 50
COMPLETED_STAY_BATCH = 100
CALENDAR_BLOCK_BATCH = 100


class MaintenanceService:
    @classmethod
    async def cleanup_bookings(cls, now: Optional[datetime] = None) -> CleanupResult:
        """Expire unpaid holds, cancel stalled payments, complete past stays and prune old blocks."""
        now = now or utc_now()
        now_ts = format_timestamp(now)
        yesterday = format_date((now - timedelta(days=1)).date())
        stale_before = format_timestamp(now - timedelta(hours=settings.payment_processing_timeout_hours))
        counts: Dict[str, int] = {}

        with transaction() as conn:
            expired = conn.execute(
                "SELECT id, guest_id FROM bookings WHERE status = 'pending_payment' AND expires_at <= ?"
                " ORDER BY expires_at LIMIT ?",
                (now_ts, EXPIRED_HOLD_BATCH),
            ).fetchall()
            for row in expired:
                conn.execute(
                    """
                    UPDATE bookings
                       SET status = 'cancelled_by_system', cancelled_at = ?, cancelled_by = 'system',
                           cancellation_reason = 'Payment timeout', updated_at = ?
                     WHERE id = ?
                    """,
                    (now_ts, now_ts, row["id"]),
                )
            counts["expired_holds"] = len(expired)

            stale = conn.execute(
                "SELECT id, guest_id, payment_intent_id FROM bookings"
                " WHERE status = 'payment_processing' AND created_at <= ?"
                " ORDER BY created_at LIMIT ?",
                (stale_before, STALE_PAYMENT_BATCH),
            ).fetchall()
            for row in stale:
                conn.execute(
                    """
                    UPDATE bookings
                       SET status = 'cancelled_by_system', cancelled_at = ?, cancelled_by = 'system',
                           cancellation_reason = 'Payment processing timeout', updated_at = ?
                     WHERE id = ?
                    """,
                    (now_ts, now_ts, row["id"]),
                )
                add_notification(
                    conn, row["guest_id"], "booking_expired", "Booking expired",
                    "We did not receive your payment in time and the booking was released.",
                    {"booking_id": row["id"]},
                )
            counts["stale_payments"] = len(stale)

            finished = conn.execute(
                "SELECT id FROM bookings WHERE status IN ('confirmed', 'checked_in', 'checked_out')"
                " AND check_out <= ? ORDER BY check_out LIMIT ?",
                (yesterday, COMPLETED_STAY_BATCH),
            ).fetchall()
            for row in finished:
                conn.execute(
                    "UPDATE bookings SET status = 'completed', completed_at = ?, updated_at = ? WHERE id = ?",
                    (now_ts, now_ts, row["id"]),
                )
            counts["completed_stays"] = len(finished)

            cursor = conn.execute(
                "DELETE FROM calendar_blocks WHERE id IN"
                " (SELECT id FROM calendar_blocks WHERE end_date <= ? ORDER BY end_date LIMIT ?)",
                (yesterday, CALENDAR_BLOCK_BATCH),
            )
            counts["removed_blocks"] = cursor.rowcount

        total = sum(counts.values())
        logger.info("Booking cleanup finished: %s", counts)
        if total:
            await AuditService.record(
                user_id=None, action="cleanup", object_type="booking", details=counts
            )
        return CleanupResult(success=True, cleaned_count=total, timestamp=now.isoformat(), **counts)
