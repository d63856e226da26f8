"""
Business logic for listings, their moderation and host calendars.

Listings are visible to the public only while ``active``.  Owners and
administrators can see them in every state.  Deleting a listing that
has bookings archives it instead, so booking history keeps pointing at
a real row.
"""

import json
import logging
import sqlite3
from typing import Any, Dict, List, Optional

from enatbet_api.app.core.db import get_connection, transaction
from enatbet_api.app.schemas.listing import (
    AvailabilityRead,
    BookedRange,
    CalendarBlockCreate,
    CalendarBlockRead,
    ListingCreate,
    ListingRead,
    ListingUpdate,
)
from enatbet_api.app.services.audit_service import AuditService
from enatbet_api.app.services.booking_service import BLOCKING_BOOKINGS_SQL, find_conflict
from enatbet_api.app.services.errors import ConflictError, NotFoundError, PermissionDeniedError
from enatbet_api.app.services.host_application_service import promote_to_host
from enatbet_api.app.services.notification_service import add_notification
from enatbet_api.app.services.settings_service import read_platform_settings
from enatbet_api.app.utils.dates import calculate_nights, now_timestamp, parse_date

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 50
MAX_SEARCH_LIMIT = 100

_JSON_COLUMNS = ("amenities", "images")


def row_to_listing(row: sqlite3.Row) -> ListingRead:
    data = dict(row)
    for column in _JSON_COLUMNS:
        data[column] = json.loads(data[column]) if data[column] else []
    data["instant_book"] = bool(data["instant_book"])
    return ListingRead(**data)


def _can_manage(listing: sqlite3.Row, current_user: Optional[Dict[str, Any]]) -> bool:
    if not current_user:
        return False
    return current_user.get("role") == "admin" or listing["host_id"] == current_user.get("user_id")


def _load_owned(conn: sqlite3.Connection, listing_id: int, current_user: Dict[str, Any]) -> sqlite3.Row:
    listing = conn.execute("SELECT * FROM listings WHERE id = ?", (listing_id,)).fetchone()
    if not listing:
        raise NotFoundError(f"Listing {listing_id} not found")
    if not _can_manage(listing, current_user):
        raise PermissionDeniedError("Only the listing owner can do this")
    return listing


class ListingService:
    """Service for listings."""

    @classmethod
    async def search_listings(
        cls,
        city: Optional[str] = None,
        host_id: Optional[int] = None,
        guests: Optional[int] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
        offset: int = 0,
        current_user: Optional[Dict[str, Any]] = None,
    ) -> List[ListingRead]:
        """Search listings.

        Only active listings are returned, except when hosts filter on
        their own ``host_id`` (or an admin filters on any host), in
        which case every non-archived listing of that host is returned.
        """
        limit = max(1, min(limit, MAX_SEARCH_LIMIT))
        where: List[str] = []
        params: List[Any] = []
        own_listings = host_id is not None and current_user is not None and (
            current_user.get("user_id") == host_id or current_user.get("role") == "admin"
        )
        if own_listings:
            where.append("status != 'archived'")
        else:
            where.append("status = 'active'")
        if city:
            where.append("LOWER(city) = LOWER(?)")
            params.append(city.strip())
        if host_id is not None:
            where.append("host_id = ?")
            params.append(host_id)
        if guests is not None:
            where.append("max_guests >= ?")
            params.append(guests)
        if min_price is not None:
            where.append("price_per_night >= ?")
            params.append(min_price)
        if max_price is not None:
            where.append("price_per_night <= ?")
            params.append(max_price)
        query = "SELECT * FROM listings WHERE " + " AND ".join(where)
        query += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        conn = get_connection()
        try:
            return [row_to_listing(row) for row in conn.execute(query, tuple(params)).fetchall()]
        finally:
            conn.close()

    @classmethod
    async def get_listing(cls, listing_id: int, current_user: Optional[Dict[str, Any]] = None) -> ListingRead:
        conn = get_connection()
        try:
            row = conn.execute("SELECT * FROM listings WHERE id = ?", (listing_id,)).fetchone()
            if not row or (row["status"] != "active" and not _can_manage(row, current_user)):
                raise NotFoundError(f"Listing {listing_id} not found")
            return row_to_listing(row)
        finally:
            conn.close()

    @classmethod
    async def create_listing(cls, data: ListingCreate, current_user: Dict[str, Any]) -> ListingRead:
        """Create a listing owned by the caller.

        Guests creating their first listing become hosts, which needs an
        approved host application while ``require_host_verification`` is
        on.  The listing goes live immediately only when
        ``auto_approve_listings`` is on.
        """
        if data.min_nights > data.max_nights:
            raise ValueError("min_nights cannot exceed max_nights")
        user_id = current_user["user_id"]
        values = data.model_dump()
        for column in _JSON_COLUMNS:
            values[column] = json.dumps(values[column])
        values["instant_book"] = int(values["instant_book"])
        with transaction() as conn:
            promote_to_host(conn, user_id, current_user.get("role"))
            platform = read_platform_settings(conn)
            values["status"] = "active" if platform.auto_approve_listings else "pending_approval"
            values["host_id"] = user_id
            columns = ", ".join(values)
            placeholders = ", ".join("?" for _ in values)
            cursor = conn.execute(
                f"INSERT INTO listings ({columns}) VALUES ({placeholders})", tuple(values.values())
            )
            listing_id = cursor.lastrowid
            row = conn.execute("SELECT * FROM listings WHERE id = ?", (listing_id,)).fetchone()
        logger.info("User %s created listing %s (%s)", user_id, listing_id, row["status"])
        await AuditService.record(
            user_id=user_id, action="create", object_type="listing", object_id=listing_id,
            details={"status": row["status"]},
        )
        return row_to_listing(row)

    @classmethod
    async def update_listing(
        cls, listing_id: int, data: ListingUpdate, current_user: Dict[str, Any]
    ) -> ListingRead:
        changes = data.model_dump(exclude_none=True)
        with transaction() as conn:
            listing = _load_owned(conn, listing_id, current_user)
            if "status" in changes and listing["status"] not in ("active", "inactive"):
                raise ConflictError(f"Listing is {listing['status']} and cannot be toggled")
            min_nights = changes.get("min_nights", listing["min_nights"])
            max_nights = changes.get("max_nights", listing["max_nights"])
            if min_nights > max_nights:
                raise ValueError("min_nights cannot exceed max_nights")
            for column in _JSON_COLUMNS:
                if column in changes:
                    changes[column] = json.dumps(changes[column])
            if "instant_book" in changes:
                changes["instant_book"] = int(changes["instant_book"])
            if changes:
                assignments = ", ".join(f"{column} = ?" for column in changes)
                conn.execute(
                    f"UPDATE listings SET {assignments}, updated_at = ? WHERE id = ?",
                    (*changes.values(), now_timestamp(), listing_id),
                )
            row = conn.execute("SELECT * FROM listings WHERE id = ?", (listing_id,)).fetchone()
        await AuditService.record(
            user_id=current_user["user_id"], action="update", object_type="listing",
            object_id=listing_id, details={"fields": sorted(changes)},
        )
        return row_to_listing(row)

    @classmethod
    async def delete_listing(cls, listing_id: int, current_user: Dict[str, Any]) -> str:
        """Delete a listing, or archive it when bookings or conversations reference it.

        Returns ``"deleted"`` or ``"archived"``.  Listings with upcoming
        active bookings cannot be removed at all.
        """
        with transaction() as conn:
            _load_owned(conn, listing_id, current_user)
            upcoming = conn.execute(
                "SELECT COUNT(*) FROM bookings WHERE listing_id = ? AND check_out > date('now')"
                f" AND ({BLOCKING_BOOKINGS_SQL})",
                (listing_id, now_timestamp()),
            ).fetchone()[0]
            if upcoming:
                raise ConflictError("Listing has upcoming bookings; cancel them first")
            referenced = conn.execute(
                "SELECT 1 FROM bookings WHERE listing_id = ?"
                " UNION ALL SELECT 1 FROM conversations WHERE listing_id = ? LIMIT 1",
                (listing_id, listing_id),
            ).fetchone()
            conn.execute("DELETE FROM favorites WHERE listing_id = ?", (listing_id,))
            conn.execute(
                "DELETE FROM calendar_blocks WHERE listing_id = ? AND type = 'host_block'", (listing_id,)
            )
            if referenced:
                conn.execute(
                    "UPDATE listings SET status = 'archived', updated_at = ? WHERE id = ?",
                    (now_timestamp(), listing_id),
                )
                outcome = "archived"
            else:
                conn.execute("DELETE FROM listings WHERE id = ?", (listing_id,))
                outcome = "deleted"
        logger.info("Listing %s %s by user %s", listing_id, outcome, current_user["user_id"])
        await AuditService.record(
            user_id=current_user["user_id"], action=outcome, object_type="listing", object_id=listing_id
        )
        return outcome

    # -- moderation --------------------------------------------------------

    @classmethod
    async def list_by_status(cls, status: Optional[str] = None, limit: int = 50, offset: int = 0) -> List[ListingRead]:
        conn = get_connection()
        try:
            query = "SELECT * FROM listings"
            params: List[Any] = []
            if status:
                query += " WHERE status = ?"
                params.append(status)
            query += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
            params.extend([limit, offset])
            return [row_to_listing(row) for row in conn.execute(query, tuple(params)).fetchall()]
        finally:
            conn.close()

    @classmethod
    async def moderate(
        cls, listing_id: int, approve: bool, admin_id: int, reason: Optional[str] = None
    ) -> ListingRead:
        new_status = "active" if approve else "rejected"
        with transaction() as conn:
            listing = conn.execute("SELECT * FROM listings WHERE id = ?", (listing_id,)).fetchone()
            if not listing:
                raise NotFoundError(f"Listing {listing_id} not found")
            if listing["status"] == "archived":
                raise ConflictError("Archived listings cannot be moderated")
            conn.execute(
                "UPDATE listings SET status = ?, updated_at = ? WHERE id = ?",
                (new_status, now_timestamp(), listing_id),
            )
            if approve:
                add_notification(
                    conn, listing["host_id"], "listing_approved", "Your listing is live",
                    f"\"{listing['title']}\" has been approved.", {"listing_id": listing_id},
                )
            else:
                add_notification(
                    conn, listing["host_id"], "listing_rejected", "Your listing was not approved",
                    reason, {"listing_id": listing_id},
                )
            row = conn.execute("SELECT * FROM listings WHERE id = ?", (listing_id,)).fetchone()
        logger.info("Admin %s set listing %s to %s", admin_id, listing_id, new_status)
        await AuditService.record(
            user_id=admin_id, action="approve" if approve else "reject", object_type="listing",
            object_id=listing_id, details={"reason": reason} if reason else None,
        )
        return row_to_listing(row)

    # -- calendar ----------------------------------------------------------

    @classmethod
    async def get_availability(cls, listing_id: int, start_date: str, end_date: str) -> AvailabilityRead:
        """Return the booked and blocked ranges overlapping ``[start_date, end_date)``."""
        if calculate_nights(start_date, end_date) <= 0:
            raise ValueError("end must be after start")
        conn = get_connection()
        try:
            if not conn.execute(
                "SELECT 1 FROM listings WHERE id = ? AND status = 'active'", (listing_id,)
            ).fetchone():
                raise NotFoundError(f"Listing {listing_id} not found")
            ranges: List[BookedRange] = []
            bookings = conn.execute(
                "SELECT check_in, check_out FROM bookings"
                " WHERE listing_id = ? AND check_in < ? AND ? < check_out"
                f" AND ({BLOCKING_BOOKINGS_SQL}) ORDER BY check_in",
                (listing_id, end_date, start_date, now_timestamp()),
            ).fetchall()
            for row in bookings:
                ranges.append(BookedRange(start_date=row["check_in"], end_date=row["check_out"], type="booking"))
            blocks = conn.execute(
                "SELECT start_date, end_date FROM calendar_blocks"
                " WHERE listing_id = ? AND type = 'host_block' AND start_date < ? AND ? < end_date"
                " ORDER BY start_date",
                (listing_id, end_date, start_date),
            ).fetchall()
            for row in blocks:
                ranges.append(BookedRange(start_date=row["start_date"], end_date=row["end_date"], type="blocked"))
            ranges.sort(key=lambda r: r.start_date)
            return AvailabilityRead(
                listing_id=listing_id, start_date=start_date, end_date=end_date, unavailable=ranges
            )
        finally:
            conn.close()

    @classmethod
    async def add_block(
        cls, listing_id: int, data: CalendarBlockCreate, current_user: Dict[str, Any]
    ) -> CalendarBlockRead:
        if parse_date(data.end_date) <= parse_date(data.start_date):
            raise ValueError("end_date must be after start_date")
        with transaction() as conn:
            _load_owned(conn, listing_id, current_user)
            conflict = find_conflict(conn, listing_id, data.start_date, data.end_date)
            if conflict:
                raise ConflictError(conflict)
            cursor = conn.execute(
                "INSERT INTO calendar_blocks (listing_id, start_date, end_date, type, reason)"
                " VALUES (?, ?, ?, 'host_block', ?)",
                (listing_id, data.start_date, data.end_date, data.reason),
            )
            row = conn.execute("SELECT * FROM calendar_blocks WHERE id = ?", (cursor.lastrowid,)).fetchone()
        return CalendarBlockRead(**dict(row))

    @classmethod
    async def remove_block(cls, listing_id: int, block_id: int, current_user: Dict[str, Any]) -> None:
        with transaction() as conn:
            _load_owned(conn, listing_id, current_user)
            cursor = conn.execute(
                "DELETE FROM calendar_blocks WHERE id = ? AND listing_id = ? AND type = 'host_block'",
                (block_id, listing_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Calendar block {block_id} not found")
