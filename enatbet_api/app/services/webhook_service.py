"""
Stripe webhook processing.

Each verified event is handled inside a single transaction that also
inserts the event id into ``webhook_events``.  Stripe delivers events
at least once, so a redelivered event finds its id already present and
is acknowledged without being applied again.  When a handler fails the
whole transaction, ledger row included, is rolled back and the error
propagates, so Stripe retries the delivery later.

Handlers receive the open connection and the event's ``data.object``
as a plain dict.
"""

import json
import logging
import sqlite3
from datetime import timedelta
from typing import Any, Callable, Dict, Optional

from enatbet_api.app.core.config import settings
from enatbet_api.app.core.db import transaction
from enatbet_api.app.services.booking_service import find_conflict
from enatbet_api.app.services.notification_service import add_notification
from enatbet_api.app.services.payment_service import set_payment_status
from enatbet_api.app.utils.dates import format_timestamp, now_timestamp, utc_now

logger = logging.getLogger(__name__)

Handler = Callable[[sqlite3.Connection, Dict[str, Any]], None]


def _booking_for_intent(conn: sqlite3.Connection, intent: Dict[str, Any]) -> Optional[sqlite3.Row]:
    booking = conn.execute(
        "SELECT * FROM bookings WHERE payment_intent_id = ?", (intent["id"],)
    ).fetchone()
    if booking:
        return booking
    booking_id = (intent.get("metadata") or {}).get("booking_id")
    if booking_id and str(booking_id).isdigit():
        return conn.execute("SELECT * FROM bookings WHERE id = ?", (int(booking_id),)).fetchone()
    return None


def _charge_details(intent: Dict[str, Any]) -> tuple:
    """Extract ``(charge_id, receipt_url)`` from a PaymentIntent payload."""
    charge = intent.get("latest_charge")
    if isinstance(charge, dict):
        return charge.get("id"), charge.get("receipt_url")
    charges = (intent.get("charges") or {}).get("data") or []
    if charges:
        return charge or charges[0].get("id"), charges[0].get("receipt_url")
    return charge, None


def _add_alert(
    conn: sqlite3.Connection,
    type_: str,
    booking_id: Optional[int] = None,
    dispute_id: Optional[str] = None,
    amount: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
) -> None:
    conn.execute(
        "INSERT INTO admin_alerts (type, booking_id, dispute_id, amount, details) VALUES (?, ?, ?, ?, ?)",
        (type_, booking_id, dispute_id, amount, json.dumps(details) if details else None),
    )


def _ensure_payment_row(conn: sqlite3.Connection, booking: sqlite3.Row, intent: Dict[str, Any]) -> None:
    # The webhook can arrive before create-payment has recorded the intent.
    conn.execute(
        """
        INSERT OR IGNORE INTO payments (booking_id, user_id, payment_intent_id, amount, currency,
                                        application_fee, status)
        VALUES (?, ?, ?, ?, ?, ?, 'processing')
        """,
        (
            booking["id"],
            booking["guest_id"],
            intent["id"],
            intent.get("amount") or 0,
            (intent.get("currency") or booking["currency"]).upper(),
            intent.get("application_fee_amount") or 0,
        ),
    )


def handle_payment_succeeded(conn: sqlite3.Connection, intent: Dict[str, Any]) -> None:
    booking = _booking_for_intent(conn, intent)
    if not booking:
        logger.warning("payment_intent.succeeded for unknown intent %s", intent["id"])
        return
    _ensure_payment_row(conn, booking, intent)
    set_payment_status(conn, intent["id"], "succeeded")

    if booking["status"] == "confirmed":
        if booking["payment_intent_id"] and booking["payment_intent_id"] != intent["id"]:
            # A second charge for a booking another intent already paid.
            logger.error(
                "Payment %s succeeded for booking %s already paid by %s; flagged for refund",
                intent["id"], booking["id"], booking["payment_intent_id"],
            )
            _add_alert(
                conn, "orphaned_payment", booking_id=booking["id"], amount=intent.get("amount"),
                details={"payment_intent_id": intent["id"], "status": booking["status"], "duplicate": True},
            )
        return
    conflict = None
    if booking["status"] in ("payment_processing", "pending_payment"):
        conflict = find_conflict(
            conn, booking["listing_id"], booking["check_in"], booking["check_out"],
            exclude_booking_id=booking["id"],
        )
    if booking["status"] not in ("payment_processing", "pending_payment") or conflict:
        # Money arrived for a booking that can no longer be honoured.
        logger.error(
            "Payment %s succeeded for booking %s in status %s; flagged for refund",
            intent["id"], booking["id"], booking["status"],
        )
        _add_alert(
            conn, "orphaned_payment", booking_id=booking["id"], amount=intent.get("amount"),
            details={"payment_intent_id": intent["id"], "status": booking["status"], "conflict": conflict},
        )
        return

    charge_id, receipt_url = _charge_details(intent)
    now = now_timestamp()
    conn.execute(
        """
        UPDATE bookings
           SET status = 'confirmed', confirmed_at = ?, expires_at = NULL, charge_id = ?,
               receipt_url = ?, payment_intent_id = ?, updated_at = ?
         WHERE id = ?
        """,
        (now, charge_id, receipt_url, intent["id"], now, booking["id"]),
    )
    conn.execute(
        "INSERT INTO calendar_blocks (listing_id, booking_id, start_date, end_date, type)"
        " VALUES (?, ?, ?, ?, 'booking')",
        (booking["listing_id"], booking["id"], booking["check_in"], booking["check_out"]),
    )
    conn.execute(
        "UPDATE listings SET bookings_count = bookings_count + 1 WHERE id = ?", (booking["listing_id"],)
    )
    data = {"booking_id": booking["id"], "confirmation_code": booking["confirmation_code"]}
    add_notification(
        conn, booking["guest_id"], "booking_confirmed", "Booking confirmed",
        f"Your stay from {booking['check_in']} to {booking['check_out']} is confirmed."
        f" Confirmation code {booking['confirmation_code']}.",
        data,
    )
    add_notification(
        conn, booking["host_id"], "new_booking", "New booking",
        f"You have a new booking from {booking['check_in']} to {booking['check_out']}.",
        data,
    )
    logger.info("Booking %s confirmed by payment %s", booking["id"], intent["id"])


def handle_payment_failed(conn: sqlite3.Connection, intent: Dict[str, Any]) -> None:
    booking = _booking_for_intent(conn, intent)
    set_payment_status(conn, intent["id"], "failed")
    if not booking or booking["status"] != "payment_processing":
        return
    # Give the guest a fresh hold to retry with another payment method.
    expires_at = format_timestamp(utc_now() + timedelta(minutes=settings.booking_hold_minutes))
    conn.execute(
        "UPDATE bookings SET status = 'pending_payment', expires_at = ?, updated_at = ?"
        " WHERE id = ? AND status = 'payment_processing'",
        (expires_at, now_timestamp(), booking["id"]),
    )
    error = (intent.get("last_payment_error") or {}).get("message")
    add_notification(
        conn, booking["guest_id"], "payment_failed", "Payment failed",
        error or "Your payment could not be completed. Please try another payment method.",
        {"booking_id": booking["id"]},
    )
    logger.info("Payment %s failed for booking %s", intent["id"], booking["id"])


def handle_dispute_created(conn: sqlite3.Connection, dispute: Dict[str, Any]) -> None:
    charge_id = dispute.get("charge")
    intent_id = dispute.get("payment_intent")
    booking = None
    if charge_id:
        booking = conn.execute("SELECT * FROM bookings WHERE charge_id = ?", (charge_id,)).fetchone()
    if not booking and intent_id:
        booking = conn.execute(
            "SELECT * FROM bookings WHERE payment_intent_id = ?", (intent_id,)
        ).fetchone()
    _add_alert(
        conn, "dispute", booking_id=booking["id"] if booking else None, dispute_id=dispute["id"],
        amount=dispute.get("amount"), details={"reason": dispute.get("reason"), "charge": charge_id},
    )
    if not booking:
        logger.warning("Dispute %s for unknown charge %s", dispute["id"], charge_id)
        return
    now = now_timestamp()
    conn.execute(
        """
        UPDATE bookings
           SET status = 'disputed', dispute_id = ?, dispute_reason = ?, disputed_at = ?, updated_at = ?
         WHERE id = ?
        """,
        (dispute["id"], dispute.get("reason"), now, now, booking["id"]),
    )
    if booking["payment_intent_id"]:
        set_payment_status(conn, booking["payment_intent_id"], "disputed")
    logger.warning("Booking %s disputed (%s)", booking["id"], dispute.get("reason"))


def handle_charge_refunded(conn: sqlite3.Connection, charge: Dict[str, Any]) -> None:
    intent_id = charge.get("payment_intent")
    if not intent_id:
        return
    refunded = int(charge.get("amount_refunded") or 0)
    full = bool(charge.get("refunded")) or refunded >= int(charge.get("amount") or 0)
    if not full:
        conn.execute(
            "UPDATE payments SET refunded_amount = MAX(refunded_amount, ?), updated_at = ?"
            " WHERE payment_intent_id = ?",
            (refunded, now_timestamp(), intent_id),
        )
        return
    set_payment_status(conn, intent_id, "refunded", refunded_amount=refunded)
    conn.execute(
        "UPDATE bookings SET status = 'refunded', updated_at = ?"
        " WHERE payment_intent_id = ? AND status NOT IN ('cancelled', 'cancelled_by_system', 'refunded')",
        (now_timestamp(), intent_id),
    )
    conn.execute(
        "DELETE FROM calendar_blocks WHERE booking_id IN"
        " (SELECT id FROM bookings WHERE payment_intent_id = ? AND status = 'refunded')",
        (intent_id,),
    )


def handle_transfer_created(conn: sqlite3.Connection, transfer: Dict[str, Any]) -> None:
    source = transfer.get("source_transaction")
    booking = None
    if source:
        booking = conn.execute(
            "SELECT id, payment_intent_id FROM bookings WHERE charge_id = ?", (source,)
        ).fetchone()
    conn.execute(
        """
        INSERT OR IGNORE INTO transfers (id, amount, currency, destination, booking_id, payment_intent_id)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            transfer["id"],
            transfer.get("amount") or 0,
            (transfer.get("currency") or "usd").upper(),
            transfer.get("destination"),
            booking["id"] if booking else None,
            booking["payment_intent_id"] if booking else None,
        ),
    )


HANDLERS: Dict[str, Handler] = {
    "payment_intent.succeeded": handle_payment_succeeded,
    "payment_intent.payment_failed": handle_payment_failed,
    "charge.dispute.created": handle_dispute_created,
    "charge.refunded": handle_charge_refunded,
    "transfer.created": handle_transfer_created,
}


class WebhookService:
    """Applies verified Stripe events exactly once."""

    @classmethod
    async def process_event(cls, event: Dict[str, Any]) -> Dict[str, Any]:
        event_id = event.get("id")
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object")
        if not event_id or not event_type or not isinstance(obj, dict):
            raise ValueError("Malformed event payload")

        with transaction() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO webhook_events (id, type, livemode) VALUES (?, ?, ?)",
                (event_id, event_type, int(bool(event.get("livemode")))),
            )
            if cursor.rowcount == 0:
                logger.info("Duplicate webhook event %s (%s) ignored", event_id, event_type)
                return {"received": True, "duplicate": True}
            handler = HANDLERS.get(event_type)
            if handler is None:
                logger.debug("No handler for webhook event type %s", event_type)
            else:
                handler(conn, obj)
        logger.info("Processed webhook event %s (%s)", event_id, event_type)
        return {"received": True}
