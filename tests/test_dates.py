from datetime import date, datetime, timezone

import pytest

from enatbet_api.app.utils.dates import (
    add_days,
    calculate_nights,
    date_ranges_overlap,
    format_timestamp,
    get_cancellation_deadline,
    is_valid_date_range,
    parse_date,
    parse_timestamp,
    validate_booking_dates,
)

TODAY = date(2026, 3, 10)


def test_parse_date_is_strict():
    assert parse_date("2026-03-10") == TODAY
    for bad in ("2026-3-10", "10/03/2026", "2026-02-30", "", "2026-03-10T00:00:00"):
        with pytest.raises(ValueError):
            parse_date(bad)


def test_nights_and_add_days():
    assert calculate_nights("2026-03-10", "2026-03-13") == 3
    assert calculate_nights("2026-03-13", "2026-03-10") == -3
    assert add_days("2026-02-27", 2) == date(2026, 3, 1)


def test_ranges_are_half_open():
    # Checking out on the day the next guest arrives is not an overlap.
    assert not date_ranges_overlap("2026-03-10", "2026-03-13", "2026-03-13", "2026-03-15")
    assert not date_ranges_overlap("2026-03-13", "2026-03-15", "2026-03-10", "2026-03-13")
    assert date_ranges_overlap("2026-03-10", "2026-03-13", "2026-03-12", "2026-03-14")
    assert date_ranges_overlap("2026-03-10", "2026-03-20", "2026-03-12", "2026-03-14")


def test_is_valid_date_range():
    assert is_valid_date_range("2026-03-10", "2026-03-11", today=TODAY)
    assert not is_valid_date_range("2026-03-09", "2026-03-11", today=TODAY)
    assert not is_valid_date_range("2026-03-11", "2026-03-11", today=TODAY)


def test_validate_booking_dates_returns_nights():
    assert validate_booking_dates("2026-03-10", "2026-03-14", today=TODAY) == 4


@pytest.mark.parametrize(
    "check_in, check_out, kwargs, message",
    [
        ("2026-03-09", "2026-03-12", {}, "Check-in date cannot be in the past"),
        ("2026-03-12", "2026-03-12", {}, "Check-out date must be after check-in date"),
        ("2026-03-12", "2026-03-13", {"min_nights": 2}, "Minimum stay is 2 nights"),
        ("2026-03-12", "2026-03-20", {"max_nights": 7}, "Maximum stay is 7 nights"),
        ("2026-03-11", "2026-03-13", {"advance_notice_days": 3}, "Bookings require 3 days advance notice"),
    ],
)
def test_validate_booking_dates_errors(check_in, check_out, kwargs, message):
    with pytest.raises(ValueError) as exc:
        validate_booking_dates(check_in, check_out, today=TODAY, **kwargs)
    assert str(exc.value) == message


def test_cancellation_deadline():
    assert get_cancellation_deadline("2026-03-20", "strict") == date(2026, 3, 13)
    assert get_cancellation_deadline("2026-03-20", "flexible") == date(2026, 3, 19)


def test_timestamps_are_utc():
    moment = datetime(2026, 3, 10, 12, 30, 5, tzinfo=timezone.utc)
    assert format_timestamp(moment) == "2026-03-10 12:30:05"
    assert parse_timestamp("2026-03-10 12:30:05") == moment
    assert parse_timestamp("2026-03-10T12:30:05.123Z") == moment
