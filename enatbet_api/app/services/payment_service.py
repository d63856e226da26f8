"""
Business logic for taking payment for a booking through Stripe.

Creating a payment happens in three steps:

1. In one transaction: check that the caller owns a booking that is
   still awaiting payment, that its nights are still free and compute
   the charge on the server.
2. Outside any transaction: find or create the Stripe customer and
   create the PaymentIntent.  A booking that already has a live intent
   gets that intent back, whatever idempotency key the client sends.
   Otherwise the key is derived from the booking id, so retries (a double
   tap, a client timeout) get the same intent back instead of a second
   charge.
3. In a second transaction: move the booking to ``payment_processing``
   (only if it is still awaiting payment) and record the payment.

Payment rows only ever move forward through ``PAYMENT_STATUS_RANK``;
late or replayed updates that would move a payment backwards are
ignored.  The one exception is ``failed -> processing``, which happens
when a guest retries with another card.
"""

import hashlib
import logging
import sqlite3
from typing import Any, Dict, List, Optional

from enatbet_api.app.core import stripe_gateway
from enatbet_api.app.core.db import get_connection, transaction
from enatbet_api.app.schemas.booking import PriceBreakdownRead
from enatbet_api.app.schemas.payment import (
    CreatePaymentResponse,
    EphemeralKey,
    EphemeralKeyResponse,
    PaymentRead,
)
from enatbet_api.app.services.audit_service import AuditService
from enatbet_api.app.services.booking_service import (
    check_minimum_amount,
    find_conflict,
    quote_stay,
)
from enatbet_api.app.services.errors import ConflictError, NotFoundError, PermissionDeniedError
from enatbet_api.app.utils.dates import format_timestamp, now_timestamp, parse_timestamp, utc_now
from enatbet_api.app.utils.money import (
    to_minor_units,
    validate_platform_fee,
    validate_stripe_charge,
)

logger = logging.getLogger(__name__)

PAYMENT_STATUS_RANK = {
    "pending": 0,
    "processing": 1,
    "succeeded": 2,
    "failed": 2,
    "refunded": 3,
    "disputed": 3,
}


def can_transition(current: str, new: str) -> bool:
    """Return True if a payment may move from ``current`` to ``new``."""
    if current == new:
        return False
    if current == "failed" and new == "processing":
        return True
    return PAYMENT_STATUS_RANK[new] > PAYMENT_STATUS_RANK[current]


def set_payment_status(
    conn: sqlite3.Connection, payment_intent_id: str, new_status: str, refunded_amount: Optional[int] = None
) -> bool:
    """Move a payment forward; return False when the row is missing or the move is backwards."""
    row = conn.execute(
        "SELECT status FROM payments WHERE payment_intent_id = ?", (payment_intent_id,)
    ).fetchone()
    if not row:
        return False
    if not can_transition(row["status"], new_status):
        logger.info(
            "Ignoring payment %s status change %s -> %s", payment_intent_id, row["status"], new_status
        )
        return False
    if refunded_amount is None:
        conn.execute(
            "UPDATE payments SET status = ?, updated_at = ? WHERE payment_intent_id = ?",
            (new_status, now_timestamp(), payment_intent_id),
        )
    else:
        conn.execute(
            "UPDATE payments SET status = ?, refunded_amount = ?, updated_at = ? WHERE payment_intent_id = ?",
            (new_status, refunded_amount, now_timestamp(), payment_intent_id),
        )
    return True


def idempotency_key_for(booking_id: int) -> str:
    digest = hashlib.sha256(f"payment:{booking_id}".encode("utf-8")).hexdigest()
    return f"payment-{digest[:32]}"


class PaymentService:
    """Service for Stripe payments."""

    @classmethod
    async def ensure_customer(cls, user_id: int, email: str) -> str:
        """Return the caller's Stripe customer id, creating and storing it if needed."""
        conn = get_connection()
        try:
            row = conn.execute("SELECT stripe_customer_id FROM users WHERE id = ?", (user_id,)).fetchone()
            existing = row["stripe_customer_id"] if row else None
        finally:
            conn.close()
        customer_id = stripe_gateway.get_or_create_customer(email, user_id, existing)
        if customer_id != existing:
            conn = get_connection()
            try:
                conn.execute(
                    "UPDATE users SET stripe_customer_id = ?, updated_at = ? WHERE id = ?",
                    (customer_id, now_timestamp(), user_id),
                )
                conn.commit()
            finally:
                conn.close()
        return customer_id

    @classmethod
    async def create_payment(
        cls,
        booking_id: int,
        current_user: Dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> CreatePaymentResponse:
        """Create (or return the existing) PaymentIntent for a booking.

        Raises ``NotFoundError``, ``PermissionDeniedError``,
        ``ConflictError`` (hold expired, dates taken, wrong status) or
        ``ValueError`` (amount outside Stripe's limits).  Stripe errors
        propagate unchanged.
        """
        user_id = current_user["user_id"]
        email = current_user.get("email")
        if not email:
            raise ValueError("An email address is required to pay")

        with transaction() as conn:
            booking = conn.execute("SELECT * FROM bookings WHERE id = ?", (booking_id,)).fetchone()
            if not booking:
                raise NotFoundError(f"Booking {booking_id} not found")
            if booking["guest_id"] != user_id:
                raise PermissionDeniedError("You can only pay for your own bookings")
            if booking["status"] == "pending_payment":
                if not booking["expires_at"] or parse_timestamp(booking["expires_at"]) <= utc_now():
                    raise ConflictError("Booking hold has expired; please book again")
            elif booking["status"] != "payment_processing":
                raise ConflictError(f"Booking is {booking['status']} and cannot be paid")

            conflict = find_conflict(
                conn, booking["listing_id"], booking["check_in"], booking["check_out"],
                exclude_booking_id=booking_id,
            )
            if conflict:
                raise ConflictError(conflict)

            breakdown = quote_stay(booking, booking["nights"])
            check_minimum_amount(breakdown)
            amount = to_minor_units(breakdown.total, breakdown.currency)
            validate_stripe_charge(amount, breakdown.currency)

            host = conn.execute(
                "SELECT stripe_connect_account_id FROM users WHERE id = ?", (booking["host_id"],)
            ).fetchone()
            destination = host["stripe_connect_account_id"] if host else None

        application_fee = to_minor_units(breakdown.service_fee, breakdown.currency) if destination else 0
        validate_platform_fee(amount, application_fee, destination)

        customer_id = await cls.ensure_customer(user_id, email)
        intent = cls._reusable_intent(booking, amount)
        if intent is None:
            key = idempotency_key or idempotency_key_for(booking_id)
            if booking["payment_intent_id"]:
                # The previous intent is dead; its key must not return it again.
                key = f"{key}-after-{booking['payment_intent_id']}"
            intent = cls._new_intent(
                booking, amount, breakdown.currency, customer_id, email, user_id,
                key, application_fee, destination,
            )
        return await cls._record_intent(booking_id, user_id, customer_id, intent, amount, breakdown, application_fee)

    @staticmethod
    def _reusable_intent(booking: sqlite3.Row, amount: int) -> Optional[Dict[str, Any]]:
        """Return the booking's current PaymentIntent when it can still take payment.

        A booking never gets a second live intent, whatever key the client
        sends.  An intent that failed goes back to ``requires_payment_method``
        and is retried in place.
        """
        if not booking["payment_intent_id"]:
            return None
        intent = stripe_gateway.retrieve_payment_intent(booking["payment_intent_id"])
        if intent["status"] == "succeeded":
            raise ConflictError("Booking has already been paid")
        if intent["status"] == "canceled":
            return None
        if intent["amount"] != amount:
            intent = stripe_gateway.update_payment_intent_amount(intent["id"], amount)
        return intent

    @staticmethod
    def _new_intent(
        booking: sqlite3.Row,
        amount: int,
        currency: str,
        customer_id: str,
        email: str,
        user_id: int,
        key: str,
        application_fee: int,
        destination: Optional[str],
    ) -> Dict[str, Any]:
        booking_id = booking["id"]
        return stripe_gateway.create_payment_intent(
            amount=amount,
            currency=currency,
            customer_id=customer_id,
            metadata={
                "booking_id": str(booking_id),
                "listing_id": str(booking["listing_id"]),
                "nights": str(booking["nights"]),
                "guest_email": email,
                "user_id": str(user_id),
            },
            idempotency_key=key,
            application_fee_amount=application_fee or None,
            destination=destination,
            description=f"Booking {booking['confirmation_code']}",
        )

    @classmethod
    async def _record_intent(
        cls,
        booking_id: int,
        user_id: int,
        customer_id: str,
        intent: Dict[str, Any],
        amount: int,
        breakdown,
        application_fee: int,
    ) -> CreatePaymentResponse:
        now = format_timestamp(utc_now())
        with transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE bookings
                   SET status = 'payment_processing', payment_intent_id = ?, subtotal = ?,
                       service_fee = ?, taxes = ?, total = ?, updated_at = ?
                 WHERE id = ? AND status IN ('pending_payment', 'payment_processing')
                """,
                (
                    intent["id"],
                    float(breakdown.base_price),
                    float(breakdown.service_fee),
                    float(breakdown.tax),
                    float(breakdown.total),
                    now,
                    booking_id,
                ),
            )
            if cursor.rowcount == 0:
                current = conn.execute("SELECT status FROM bookings WHERE id = ?", (booking_id,)).fetchone()
                # The webhook may already have confirmed the booking.
                if current["status"] != "confirmed":
                    raise ConflictError(f"Booking is {current['status']} and cannot be paid")
            conn.execute(
                """
                INSERT INTO payments (booking_id, user_id, payment_intent_id, amount, currency,
                                      application_fee, status, type)
                VALUES (?, ?, ?, ?, ?, ?, 'processing', 'booking_payment')
                ON CONFLICT(payment_intent_id) DO UPDATE
                   SET amount = excluded.amount, application_fee = excluded.application_fee,
                       updated_at = ?
                """,
                (booking_id, user_id, intent["id"], amount, breakdown.currency, application_fee, now),
            )
            set_payment_status(conn, intent["id"], "processing")

        logger.info(
            "PaymentIntent %s for booking %s: %s %s (fee %s)",
            intent["id"], booking_id, amount, breakdown.currency, application_fee,
        )
        await AuditService.record(
            user_id=user_id, action="create_payment", object_type="booking", object_id=booking_id,
            details={"payment_intent_id": intent["id"], "amount": amount},
        )
        return CreatePaymentResponse(
            client_secret=intent["client_secret"],
            payment_intent_id=intent["id"],
            customer_id=customer_id,
            amount=amount,
            currency=breakdown.currency,
            breakdown=PriceBreakdownRead(**breakdown.as_dict()),
        )

    @classmethod
    async def create_ephemeral_key(cls, current_user: Dict[str, Any], api_version: str) -> EphemeralKeyResponse:
        """Issue a short-lived key letting the mobile SDK manage the caller's saved cards."""
        email = current_user.get("email")
        if not email:
            raise ValueError("An email address is required to manage payment methods")
        customer_id = await cls.ensure_customer(current_user["user_id"], email)
        key = stripe_gateway.create_ephemeral_key(customer_id, api_version)
        return EphemeralKeyResponse(customer_id=customer_id, ephemeral_key=EphemeralKey(**key))

    @classmethod
    async def list_payments(
        cls, user_id: Optional[int] = None, status: Optional[str] = None, limit: int = 50, offset: int = 0
    ) -> List[PaymentRead]:
        where: List[str] = []
        params: List[Any] = []
        if user_id is not None:
            where.append("user_id = ?")
            params.append(user_id)
        if status:
            where.append("status = ?")
            params.append(status)
        query = "SELECT * FROM payments"
        if where:
            query += " WHERE " + " AND ".join(where)
        query += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        conn = get_connection()
        try:
            return [PaymentRead(**dict(row)) for row in conn.execute(query, tuple(params)).fetchall()]
        finally:
            conn.close()
