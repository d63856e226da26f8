"""
Business logic for reviews.

Both sides of a finished stay may review each other once: the guest
reviews the listing and its host (``guest_to_host``), the host reviews
the guest (``host_to_guest``).  Reviews must be written within
``REVIEW_WINDOW_DAYS`` of check-out and may be edited by their author
for ``REVIEW_EDIT_WINDOW_HOURS``.

A listing's ``rating`` and ``review_count`` are derived from its
published guest reviews and recomputed whenever one of them changes.
"""

import logging
import sqlite3
from datetime import timedelta
from typing import Any, Dict, List, Optional

from enatbet_api.app.core.db import get_connection, transaction
from enatbet_api.app.schemas.review import ReviewCreate, ReviewRead, ReviewUpdate
from enatbet_api.app.services.audit_service import AuditService
from enatbet_api.app.services.errors import ConflictError, NotFoundError, PermissionDeniedError
from enatbet_api.app.services.notification_service import add_notification
from enatbet_api.app.services.settings_service import read_platform_settings
from enatbet_api.app.utils.dates import calculate_nights, now_timestamp, parse_timestamp, today_utc, utc_now

logger = logging.getLogger(__name__)

REVIEW_WINDOW_DAYS = 14
REVIEW_EDIT_WINDOW_HOURS = 48
REVIEWABLE_STATUSES = ("checked_out", "completed")
_SUB_RATINGS = ("cleanliness", "accuracy", "communication", "location", "value")


def refresh_listing_rating(conn: sqlite3.Connection, listing_id: int) -> None:
    conn.execute(
        """
        UPDATE listings
           SET rating = COALESCE((SELECT ROUND(AVG(rating), 2) FROM reviews
                                   WHERE listing_id = ? AND type = 'guest_to_host' AND status = 'published'), 0),
               review_count = (SELECT COUNT(*) FROM reviews
                                WHERE listing_id = ? AND type = 'guest_to_host' AND status = 'published')
         WHERE id = ?
        """,
        (listing_id, listing_id, listing_id),
    )


def _load(conn: sqlite3.Connection, review_id: int) -> sqlite3.Row:
    row = conn.execute("SELECT * FROM reviews WHERE id = ?", (review_id,)).fetchone()
    if not row:
        raise NotFoundError(f"Review {review_id} not found")
    return row


class ReviewService:
    """Service for reviews."""

    @classmethod
    async def create_review(cls, data: ReviewCreate, current_user: Dict[str, Any]) -> ReviewRead:
        user_id = current_user["user_id"]
        with transaction() as conn:
            booking = conn.execute("SELECT * FROM bookings WHERE id = ?", (data.booking_id,)).fetchone()
            if not booking:
                raise NotFoundError(f"Booking {data.booking_id} not found")
            if booking["guest_id"] == user_id:
                review_type, reviewee_id = "guest_to_host", booking["host_id"]
            elif booking["host_id"] == user_id:
                review_type, reviewee_id = "host_to_guest", booking["guest_id"]
            else:
                raise PermissionDeniedError("Only the guest or host of a booking can review it")

            platform = read_platform_settings(conn)
            if review_type == "guest_to_host" and not platform.enable_guest_reviews:
                raise ValueError("Guest reviews are currently disabled")
            if review_type == "host_to_guest" and not platform.enable_host_reviews:
                raise ValueError("Host reviews are currently disabled")

            if booking["status"] not in REVIEWABLE_STATUSES:
                raise ConflictError("Reviews can only be written after check-out")
            if calculate_nights(booking["check_out"], today_utc()) > REVIEW_WINDOW_DAYS:
                raise ValueError(f"Reviews must be written within {REVIEW_WINDOW_DAYS} days of check-out")
            if conn.execute(
                "SELECT 1 FROM reviews WHERE booking_id = ? AND reviewer_id = ? AND type = ?",
                (data.booking_id, user_id, review_type),
            ).fetchone():
                raise ConflictError("You have already reviewed this booking")

            cursor = conn.execute(
                f"""
                INSERT INTO reviews (booking_id, listing_id, reviewer_id, reviewee_id, type, rating,
                                     {", ".join(_SUB_RATINGS)}, comment, status)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'published')
                """,
                (
                    data.booking_id,
                    booking["listing_id"],
                    user_id,
                    reviewee_id,
                    review_type,
                    data.rating,
                    *(getattr(data, name) for name in _SUB_RATINGS),
                    data.comment,
                ),
            )
            review_id = cursor.lastrowid
            if review_type == "guest_to_host":
                refresh_listing_rating(conn, booking["listing_id"])
            add_notification(
                conn, reviewee_id, "new_review", "You received a review",
                f"You were rated {data.rating}/5.", {"review_id": review_id, "booking_id": data.booking_id},
            )
            row = _load(conn, review_id)
        logger.info("User %s reviewed booking %s (%s)", user_id, data.booking_id, review_type)
        await AuditService.record(
            user_id=user_id, action="create", object_type="review", object_id=review_id,
            details={"booking_id": data.booking_id, "rating": data.rating},
        )
        return ReviewRead(**dict(row))

    @classmethod
    async def list_listing_reviews(cls, listing_id: int, limit: int = 10, offset: int = 0) -> List[ReviewRead]:
        """Published guest reviews of a listing, newest first."""
        conn = get_connection()
        try:
            rows = conn.execute(
                """
                SELECT * FROM reviews
                 WHERE listing_id = ? AND type = 'guest_to_host' AND status = 'published'
                 ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?
                """,
                (listing_id, limit, offset),
            ).fetchall()
            return [ReviewRead(**dict(row)) for row in rows]
        finally:
            conn.close()

    @classmethod
    async def get_review(cls, review_id: int) -> ReviewRead:
        conn = get_connection()
        try:
            return ReviewRead(**dict(_load(conn, review_id)))
        finally:
            conn.close()

    @classmethod
    async def update_review(cls, review_id: int, data: ReviewUpdate, current_user: Dict[str, Any]) -> ReviewRead:
        changes = data.model_dump(exclude_none=True)
        with transaction() as conn:
            review = _load(conn, review_id)
            if review["reviewer_id"] != current_user["user_id"]:
                raise PermissionDeniedError("Only the author can edit a review")
            if review["status"] == "removed":
                raise ConflictError("Removed reviews cannot be edited")
            if utc_now() - parse_timestamp(review["created_at"]) > timedelta(hours=REVIEW_EDIT_WINDOW_HOURS):
                raise ConflictError(f"Reviews can only be edited within {REVIEW_EDIT_WINDOW_HOURS} hours")
            if changes:
                assignments = ", ".join(f"{column} = ?" for column in changes)
                conn.execute(
                    f"UPDATE reviews SET {assignments}, updated_at = ? WHERE id = ?",
                    (*changes.values(), now_timestamp(), review_id),
                )
                if review["type"] == "guest_to_host":
                    refresh_listing_rating(conn, review["listing_id"])
            row = _load(conn, review_id)
        return ReviewRead(**dict(row))

    @classmethod
    async def add_response(cls, review_id: int, response: str, current_user: Dict[str, Any]) -> ReviewRead:
        with transaction() as conn:
            review = _load(conn, review_id)
            if review["reviewee_id"] != current_user["user_id"]:
                raise PermissionDeniedError("Only the reviewed party can respond")
            if review["response"]:
                raise ConflictError("This review already has a response")
            now = now_timestamp()
            conn.execute(
                "UPDATE reviews SET response = ?, response_at = ?, updated_at = ? WHERE id = ?",
                (response.strip(), now, now, review_id),
            )
            row = _load(conn, review_id)
        return ReviewRead(**dict(row))

    @classmethod
    async def flag_review(cls, review_id: int, current_user: Dict[str, Any]) -> ReviewRead:
        with transaction() as conn:
            review = _load(conn, review_id)
            if review["reviewer_id"] == current_user["user_id"]:
                raise ValueError("You cannot flag your own review")
            if review["status"] == "removed":
                raise ConflictError("Review has been removed")
            conn.execute(
                "UPDATE reviews SET flagged_count = flagged_count + 1, status = 'flagged', updated_at = ?"
                " WHERE id = ?",
                (now_timestamp(), review_id),
            )
            if review["type"] == "guest_to_host":
                refresh_listing_rating(conn, review["listing_id"])
            row = _load(conn, review_id)
        logger.info("Review %s flagged by user %s", review_id, current_user["user_id"])
        return ReviewRead(**dict(row))

    # -- moderation --------------------------------------------------------

    @classmethod
    async def list_by_status(cls, status: Optional[str] = None, limit: int = 50, offset: int = 0) -> List[ReviewRead]:
        conn = get_connection()
        try:
            query = "SELECT * FROM reviews"
            params: List[Any] = []
            if status:
                query += " WHERE status = ?"
                params.append(status)
            query += " ORDER BY flagged_count DESC, created_at DESC LIMIT ? OFFSET ?"
            params.extend([limit, offset])
            return [ReviewRead(**dict(row)) for row in conn.execute(query, tuple(params)).fetchall()]
        finally:
            conn.close()

    @classmethod
    async def moderate(cls, review_id: int, approve: bool, admin_id: int) -> ReviewRead:
        """Approve (publish and clear flags) or remove a review."""
        with transaction() as conn:
            review = _load(conn, review_id)
            if approve:
                conn.execute(
                    "UPDATE reviews SET status = 'published', flagged_count = 0, updated_at = ? WHERE id = ?",
                    (now_timestamp(), review_id),
                )
            else:
                conn.execute(
                    "UPDATE reviews SET status = 'removed', updated_at = ? WHERE id = ?",
                    (now_timestamp(), review_id),
                )
            if review["type"] == "guest_to_host":
                refresh_listing_rating(conn, review["listing_id"])
            row = _load(conn, review_id)
        await AuditService.record(
            user_id=admin_id, action="approve" if approve else "remove", object_type="review",
            object_id=review_id,
        )
        return ReviewRead(**dict(row))
