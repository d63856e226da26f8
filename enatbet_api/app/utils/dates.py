"""
Date helpers for stays.

Stay dates are calendar dates without a time component and are stored
as ``YYYY-MM-DD`` strings.  Working with ``datetime.date`` keeps the
night count independent of daylight saving transitions: a stay from
2025-03-08 to 2025-03-10 is two nights even though one of those days
is 23 hours long in most US time zones.

Ranges are half-open, ``[check_in, check_out)``: a guest checking out
on the 10th does not clash with one checking in on the 10th.

Timestamps (created_at, expires_at and friends) are stored in UTC as
``YYYY-MM-DD HH:MM:SS``, the format SQLite's ``CURRENT_TIMESTAMP``
produces, so they sort and compare correctly as strings.
"""

import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union

DATE_FORMAT = "%Y-%m-%d"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

MIN_BOOKING_NIGHTS = 1
MAX_BOOKING_NIGHTS = 365

# Days before check-in after which a cancellation no longer gets a full refund.
CANCELLATION_DEADLINE_DAYS = {
    "flexible": 1,
    "moderate": 5,
    "strict": 7,
    "super_strict": 14,
}

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

DateLike = Union[str, date]


def parse_date(value: str) -> date:
    """Parse a ``YYYY-MM-DD`` string.

    Raises ``ValueError`` for anything else, including well-formed but
    impossible dates such as ``2025-13-45``.
    """
    if not isinstance(value, str) or not _DATE_RE.match(value):
        raise ValueError(f"Invalid date format: {value!r}, expected YYYY-MM-DD")
    try:
        return datetime.strptime(value, DATE_FORMAT).date()
    except ValueError:
        raise ValueError(f"Invalid date: {value!r}")


def format_date(value: date) -> str:
    """Inverse of ``parse_date``."""
    return value.strftime(DATE_FORMAT)


def as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return parse_date(value)


def add_days(value: DateLike, days: int) -> date:
    return as_date(value) + timedelta(days=days)


def calculate_nights(check_in: DateLike, check_out: DateLike) -> int:
    """Number of nights between two dates; negative when reversed."""
    return (as_date(check_out) - as_date(check_in)).days


def date_ranges_overlap(
    start1: DateLike, end1: DateLike, start2: DateLike, end2: DateLike
) -> bool:
    """Return True when the half-open ranges ``[start1, end1)`` and ``[start2, end2)`` share a night."""
    return as_date(start1) < as_date(end2) and as_date(start2) < as_date(end1)


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


def is_valid_date_range(
    check_in: DateLike, check_out: DateLike, today: Optional[date] = None
) -> bool:
    """Check-in must not be in the past and check-out must follow check-in."""
    today = today or today_utc()
    start = as_date(check_in)
    end = as_date(check_out)
    return start >= today and end > start


def validate_booking_dates(
    check_in: DateLike,
    check_out: DateLike,
    min_nights: int = MIN_BOOKING_NIGHTS,
    max_nights: int = MAX_BOOKING_NIGHTS,
    advance_notice_days: int = 0,
    today: Optional[date] = None,
) -> int:
    """Validate a requested stay and return its night count.

    Raises ``ValueError`` describing the first rule the stay breaks.
    """
    today = today or today_utc()
    start = as_date(check_in)
    end = as_date(check_out)
    if start < today:
        raise ValueError("Check-in date cannot be in the past")
    if end <= start:
        raise ValueError("Check-out date must be after check-in date")
    nights = calculate_nights(start, end)
    if nights < min_nights:
        raise ValueError(f"Minimum stay is {min_nights} night{'s' if min_nights != 1 else ''}")
    if nights > max_nights:
        raise ValueError(f"Maximum stay is {max_nights} nights")
    if advance_notice_days and (start - today).days < advance_notice_days:
        raise ValueError(f"Bookings require {advance_notice_days} days advance notice")
    return nights


def get_cancellation_deadline(check_in: DateLike, policy: str) -> date:
    """Last day on which a cancellation still receives a full refund."""
    days = CANCELLATION_DEADLINE_DAYS.get(policy, CANCELLATION_DEADLINE_DAYS["moderate"])
    return add_days(check_in, -days)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """Parse a stored UTC timestamp into an aware ``datetime``."""
    return datetime.strptime(value[:19].replace("T", " "), TIMESTAMP_FORMAT).replace(
        tzinfo=timezone.utc
    )


def now_timestamp() -> str:
    return format_timestamp(utc_now())
