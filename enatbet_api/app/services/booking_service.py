"""
Business logic for bookings.

Booking lifecycle::

    pending_payment -> payment_processing -> confirmed -> checked_in -> checked_out -> completed
                  \\                 \\             \\-> cancelled / disputed / refunded
                   \\-> cancelled_by_system (hold expired or payment stalled)

A new booking holds its dates for ``BOOKING_HOLD_MINUTES`` while the
guest pays.  The availability check and the insert run in the same
``BEGIN IMMEDIATE`` transaction, so two guests racing for the same
nights cannot both get a booking: the second transaction only starts
reading once the first has committed and then sees the clash.

Date ranges are half-open; see ``utils.dates``.
"""

import json
import logging
import secrets
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from enatbet_api.app.core import stripe_gateway
from enatbet_api.app.core.config import get_business_config, settings
from enatbet_api.app.core.db import get_connection, transaction
from enatbet_api.app.schemas.booking import BookingCreate, BookingRead
from enatbet_api.app.services.audit_service import AuditService
from enatbet_api.app.services.errors import ConflictError, NotFoundError, PermissionDeniedError
from enatbet_api.app.services.notification_service import add_notification
from enatbet_api.app.services.settings_service import read_platform_settings
from enatbet_api.app.utils.dates import (
    format_timestamp,
    now_timestamp,
    parse_date,
    today_utc,
    utc_now,
    validate_booking_dates,
)
from enatbet_api.app.utils.money import (
    STRIPE_MIN_CHARGE,
    PriceBreakdown,
    calculate_price_breakdown,
    calculate_refund,
    to_decimal,
    to_minor_units,
)

logger = logging.getLogger(__name__)

# Bookings in these states occupy their nights.  A pending_payment
# booking only does so until its hold expires; the single placeholder
# is bound to the current timestamp.
BLOCKING_BOOKINGS_SQL = (
    "status IN ('payment_processing', 'confirmed', 'checked_in', 'disputed')"
    " OR (status = 'pending_payment' AND expires_at > ?)"
)

CANCELLABLE_STATUSES = ("pending_payment", "payment_processing", "confirmed")

_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def find_conflict(
    conn: sqlite3.Connection,
    listing_id: int,
    check_in: str,
    check_out: str,
    exclude_booking_id: Optional[int] = None,
    now: Optional[str] = None,
) -> Optional[str]:
    """Describe the first booking or block overlapping ``[check_in, check_out)``, or ``None``."""
    now = now or now_timestamp()
    query = (
        "SELECT id, check_in, check_out FROM bookings"
        " WHERE listing_id = ? AND check_in < ? AND ? < check_out"
        f" AND ({BLOCKING_BOOKINGS_SQL})"
    )
    params: List[Any] = [listing_id, check_out, check_in, now]
    if exclude_booking_id is not None:
        query += " AND id != ?"
        params.append(exclude_booking_id)
    clash = conn.execute(query + " LIMIT 1", tuple(params)).fetchone()
    if clash:
        return f"Dates unavailable: booked from {clash['check_in']} to {clash['check_out']}"

    query = (
        "SELECT start_date, end_date FROM calendar_blocks"
        " WHERE listing_id = ? AND start_date < ? AND ? < end_date"
    )
    params = [listing_id, check_out, check_in]
    if exclude_booking_id is not None:
        query += " AND (booking_id IS NULL OR booking_id != ?)"
        params.append(exclude_booking_id)
    block = conn.execute(query + " LIMIT 1", tuple(params)).fetchone()
    if block:
        return f"Dates unavailable: blocked from {block['start_date']} to {block['end_date']}"
    return None


def quote_stay(source: sqlite3.Row, nights: int) -> PriceBreakdown:
    """Price a stay from a listing row, or from a booking row's captured nightly rate."""
    config = get_business_config()
    return calculate_price_breakdown(
        price_per_night=source["price_per_night"],
        nights=nights,
        platform_fee_rate=config.platform_fee_rate,
        tax_rate=config.tax_rate,
        cleaning_fee=source["cleaning_fee"],
        currency=source["currency"],
    )


def check_minimum_amount(breakdown: PriceBreakdown) -> None:
    minimum = get_business_config().min_booking_amount
    if breakdown.total < to_decimal(minimum):
        raise ValueError(f"Booking total must be at least {minimum:.2f} {breakdown.currency}")


def generate_confirmation_code(length: int = 8) -> str:
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))


def row_to_booking(row: sqlite3.Row) -> BookingRead:
    data = dict(row)
    data["guests"] = json.loads(data["guests"])
    return BookingRead(**data)


def _check_in_moment(check_in: str, check_in_time: str) -> datetime:
    hour, minute = (int(part) for part in check_in_time.split(":"))
    day = parse_date(check_in)
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


def _party(booking: sqlite3.Row, current_user: Dict[str, Any]) -> str:
    """Return which side of the booking the caller is on."""
    if booking["guest_id"] == current_user.get("user_id"):
        return "guest"
    if booking["host_id"] == current_user.get("user_id"):
        return "host"
    if current_user.get("role") == "admin":
        return "admin"
    raise PermissionDeniedError("You do not have access to this booking")


class BookingService:
    """Service for creating, reading and cancelling bookings."""

    @classmethod
    async def create_booking(cls, data: BookingCreate, current_user: Dict[str, Any]) -> BookingRead:
        """Reserve a listing for the requested dates.

        Raises ``NotFoundError`` for an unknown or inactive listing,
        ``ConflictError`` when the nights are taken and ``ValueError``
        for invalid dates or party sizes.
        """
        guest_id = current_user["user_id"]
        now = utc_now()
        with transaction() as conn:
            listing = conn.execute("SELECT * FROM listings WHERE id = ?", (data.listing_id,)).fetchone()
            if not listing or listing["status"] != "active":
                raise NotFoundError(f"Listing {data.listing_id} not found")
            if listing["host_id"] == guest_id:
                raise ValueError("You cannot book your own listing")
            if listing["currency"] not in STRIPE_MIN_CHARGE:
                raise ValueError(f"Listings priced in {listing['currency']} cannot be paid by card")

            platform = read_platform_settings(conn)
            nights = validate_booking_dates(
                data.check_in,
                data.check_out,
                min_nights=max(listing["min_nights"], platform.min_booking_days),
                max_nights=min(listing["max_nights"], platform.max_booking_days),
                advance_notice_days=listing["advance_notice_days"],
                today=today_utc(),
            )
            if data.guests.total > listing["max_guests"]:
                raise ValueError(f"This listing accommodates at most {listing['max_guests']} guests")

            conflict = find_conflict(
                conn, data.listing_id, data.check_in, data.check_out, now=format_timestamp(now)
            )
            if conflict:
                raise ConflictError(conflict)

            breakdown = quote_stay(listing, nights)
            check_minimum_amount(breakdown)

            code = generate_confirmation_code()
            while conn.execute("SELECT 1 FROM bookings WHERE confirmation_code = ?", (code,)).fetchone():
                code = generate_confirmation_code()

            expires_at = format_timestamp(now + timedelta(minutes=settings.booking_hold_minutes))
            cursor = conn.execute(
                """
                INSERT INTO bookings (
                    listing_id, guest_id, host_id, check_in, check_out, nights, guests,
                    guest_count, special_requests, currency, price_per_night, subtotal,
                    cleaning_fee, service_fee, taxes, total, status, confirmation_code,
                    expires_at, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'pending_payment', ?, ?, ?, ?)
                """,
                (
                    data.listing_id,
                    guest_id,
                    listing["host_id"],
                    data.check_in,
                    data.check_out,
                    nights,
                    data.guests.model_dump_json(),
                    data.guests.total,
                    data.special_requests,
                    breakdown.currency,
                    float(breakdown.price_per_night),
                    float(breakdown.base_price),
                    float(breakdown.cleaning_fee),
                    float(breakdown.service_fee),
                    float(breakdown.tax),
                    float(breakdown.total),
                    code,
                    expires_at,
                    format_timestamp(now),
                    format_timestamp(now),
                ),
            )
            booking_id = cursor.lastrowid
            row = conn.execute("SELECT * FROM bookings WHERE id = ?", (booking_id,)).fetchone()

        logger.info(
            "Booking %s created for listing %s (%s to %s) by user %s",
            booking_id, data.listing_id, data.check_in, data.check_out, guest_id,
        )
        await AuditService.record(
            user_id=guest_id, action="create", object_type="booking", object_id=booking_id,
            details={"listing_id": data.listing_id, "total": float(breakdown.total)},
        )
        return row_to_booking(row)

    @classmethod
    async def get_booking(cls, booking_id: int, current_user: Dict[str, Any]) -> BookingRead:
        conn = get_connection()
        try:
            row = conn.execute("SELECT * FROM bookings WHERE id = ?", (booking_id,)).fetchone()
            if not row:
                raise NotFoundError(f"Booking {booking_id} not found")
            _party(row, current_user)
            return row_to_booking(row)
        finally:
            conn.close()

    @classmethod
    async def list_bookings(
        cls,
        current_user: Dict[str, Any],
        as_host: bool = False,
        status: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[BookingRead]:
        column = "host_id" if as_host else "guest_id"
        query = f"SELECT * FROM bookings WHERE {column} = ?"
        params: List[Any] = [current_user["user_id"]]
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        conn = get_connection()
        try:
            return [row_to_booking(row) for row in conn.execute(query, tuple(params)).fetchall()]
        finally:
            conn.close()

    @classmethod
    async def list_all(cls, status: Optional[str] = None, limit: int = 50, offset: int = 0) -> List[BookingRead]:
        query = "SELECT * FROM bookings"
        params: List[Any] = []
        if status:
            query += " WHERE status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        conn = get_connection()
        try:
            return [row_to_booking(row) for row in conn.execute(query, tuple(params)).fetchall()]
        finally:
            conn.close()

    @classmethod
    async def cancel_booking(
        cls, booking_id: int, current_user: Dict[str, Any], reason: Optional[str] = None
    ) -> BookingRead:
        """Cancel a booking and refund according to the listing's policy.

        The refund is only issued for bookings whose payment has
        succeeded.  The Stripe refund is requested after the
        cancellation has been committed; if Stripe refuses, the booking
        stays cancelled and an admin alert is raised for manual follow-up.
        """
        now = utc_now()
        with transaction() as conn:
            booking = conn.execute("SELECT * FROM bookings WHERE id = ?", (booking_id,)).fetchone()
            if not booking:
                raise NotFoundError(f"Booking {booking_id} not found")
            cancelled_by = _party(booking, current_user)
            if booking["status"] not in CANCELLABLE_STATUSES:
                raise ConflictError(f"Booking cannot be cancelled in status {booking['status']}")
            listing = conn.execute(
                "SELECT cancel_policy, check_in_time, title FROM listings WHERE id = ?",
                (booking["listing_id"],),
            ).fetchone()

            refund_amount = 0.0
            refund_reason = "No payment captured"
            if booking["status"] == "confirmed" and booking["payment_intent_id"]:
                hours_until = (
                    _check_in_moment(booking["check_in"], listing["check_in_time"]) - now
                ).total_seconds() / 3600
                decision = calculate_refund(
                    total=booking["total"],
                    accommodation=booking["subtotal"],
                    policy=listing["cancel_policy"],
                    hours_until_check_in=hours_until,
                    cancelled_by=cancelled_by,
                    currency=booking["currency"],
                )
                refund_amount = float(decision.amount)
                refund_reason = decision.reason

            conn.execute(
                """
                UPDATE bookings
                   SET status = 'cancelled', cancelled_at = ?, cancelled_by = ?,
                       cancellation_reason = ?, refund_amount = ?, expires_at = NULL, updated_at = ?
                 WHERE id = ?
                """,
                (format_timestamp(now), cancelled_by, reason, refund_amount, format_timestamp(now), booking_id),
            )
            conn.execute("DELETE FROM calendar_blocks WHERE booking_id = ?", (booking_id,))

            recipients = {
                "guest": [booking["host_id"]],
                "host": [booking["guest_id"]],
                "admin": [booking["guest_id"], booking["host_id"]],
            }[cancelled_by]
            for recipient in recipients:
                add_notification(
                    conn, recipient, "booking_cancelled", "Booking cancelled",
                    f"The booking for \"{listing['title']}\" ({booking['check_in']} to {booking['check_out']})"
                    f" was cancelled by the {cancelled_by}.",
                    {"booking_id": booking_id},
                )
            row = conn.execute("SELECT * FROM bookings WHERE id = ?", (booking_id,)).fetchone()

        logger.info(
            "Booking %s cancelled by %s (user %s), refund %.2f: %s",
            booking_id, cancelled_by, current_user.get("user_id"), refund_amount, refund_reason,
        )
        if refund_amount > 0:
            await cls._issue_refund(row, refund_amount)
        await AuditService.record(
            user_id=current_user.get("user_id"), action="cancel", object_type="booking",
            object_id=booking_id, details={"by": cancelled_by, "refund": refund_amount, "reason": reason},
        )
        return row_to_booking(row)

    @classmethod
    async def _issue_refund(cls, booking: sqlite3.Row, amount: float) -> None:
        minor = to_minor_units(amount, booking["currency"])
        try:
            stripe_gateway.create_refund(
                booking["payment_intent_id"],
                minor,
                idempotency_key=f"refund-booking-{booking['id']}",
                metadata={"booking_id": str(booking["id"])},
            )
        except Exception as exc:
            logger.exception("Refund for booking %s failed", booking["id"])
            conn = get_connection()
            try:
                conn.execute(
                    "INSERT INTO admin_alerts (type, booking_id, amount, details) VALUES ('refund_failed', ?, ?, ?)",
                    (booking["id"], minor, json.dumps({"error": str(exc)})),
                )
                conn.commit()
            finally:
                conn.close()

    @classmethod
    async def record_stay_event(
        cls, booking_id: int, current_user: Dict[str, Any], event: str
    ) -> BookingRead:
        """Host (or admin) marks a guest as checked in or checked out."""
        transitions = {
            "check_in": ("confirmed", "checked_in"),
            "check_out": ("checked_in", "checked_out"),
        }
        expected, new_status = transitions[event]
        with transaction() as conn:
            booking = conn.execute("SELECT * FROM bookings WHERE id = ?", (booking_id,)).fetchone()
            if not booking:
                raise NotFoundError(f"Booking {booking_id} not found")
            if _party(booking, current_user) == "guest":
                raise PermissionDeniedError("Only the host can record check-in and check-out")
            if booking["status"] != expected:
                raise ConflictError(f"Booking must be {expected}, not {booking['status']}")
            if event == "check_in" and parse_date(booking["check_in"]) > today_utc():
                raise ValueError("Guests cannot check in before the arrival date")
            conn.execute(
                "UPDATE bookings SET status = ?, updated_at = ? WHERE id = ?",
                (new_status, now_timestamp(), booking_id),
            )
            row = conn.execute("SELECT * FROM bookings WHERE id = ?", (booking_id,)).fetchone()
        await AuditService.record(
            user_id=current_user.get("user_id"), action=event, object_type="booking", object_id=booking_id
        )
        return row_to_booking(row)
