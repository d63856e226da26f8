"""
Service layer for back-office statistics.

Provides the dashboard counters, month-by-month analytics and payment
totals shown to administrators.  Payment amounts are stored in minor
units per currency; they are converted to major units before being
summed so that totals are comparable across currencies with different
precision.

All queries are read-only.
"""

from __future__ import annotations

import sqlite3
from datetime import date
from typing import Dict, Iterable, List, Optional

from enatbet_api.app.core.db import get_connection
from enatbet_api.app.schemas.admin import Analytics, DashboardStats, LabelCount, MonthlyValue, PaymentStats
from enatbet_api.app.utils.dates import today_utc
from enatbet_api.app.utils.money import from_minor_units, round_money

ACTIVE_BOOKING_STATUSES = ("pending_payment", "payment_processing", "confirmed")
STAY_STATUSES = ("confirmed", "checked_in", "checked_out", "completed")


def previous_months(count: int, today: Optional[date] = None) -> List[str]:
    """Return ``count`` month keys ending with the current month, oldest first."""
    today = today or today_utc()
    year, month = today.year, today.month
    keys = []
    for _ in range(count):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


def growth_percent(current: float, previous: float) -> float:
    """Percent change from ``previous`` to ``current``; 100 when starting from nothing."""
    if previous == 0:
        return 100.0 if current else 0.0
    return round((current - previous) / previous * 100, 1)


def _major_total(rows: Iterable[sqlite3.Row]) -> float:
    """Sum ``(currency, total)`` rows of minor units into a major-unit float."""
    total = sum(from_minor_units(int(row["total"] or 0), row["currency"]) for row in rows)
    return float(round_money(total))


def _scalar(conn: sqlite3.Connection, query: str, params: tuple = ()) -> int:
    return conn.execute(query, params).fetchone()[0] or 0


def _placeholders(values: tuple) -> str:
    return ", ".join("?" for _ in values)


class StatisticsService:
    """Aggregated metrics for administrators."""

    @classmethod
    async def dashboard(cls, today: Optional[date] = None) -> DashboardStats:
        this_month, last_month = previous_months(2, today)[::-1]
        conn = get_connection()
        try:
            users = _scalar(conn, "SELECT COUNT(*) FROM users")
            hosts = _scalar(conn, "SELECT COUNT(*) FROM users WHERE role = 'host'")
            listings = _scalar(conn, "SELECT COUNT(*) FROM listings WHERE status != 'archived'")
            active = _scalar(
                conn,
                f"SELECT COUNT(*) FROM bookings WHERE status IN ({_placeholders(ACTIVE_BOOKING_STATUSES)})",
                ACTIVE_BOOKING_STATUSES,
            )
            pending = _scalar(conn, "SELECT COUNT(*) FROM listings WHERE status = 'pending_approval'")
            revenue_rows = conn.execute(
                "SELECT currency, SUM(amount) AS total FROM payments"
                " WHERE status = 'succeeded' AND strftime('%Y-%m', created_at) = ? GROUP BY currency",
                (this_month,),
            ).fetchall()

            def per_month(table: str, month: str) -> int:
                return _scalar(
                    conn, f"SELECT COUNT(*) FROM {table} WHERE strftime('%Y-%m', created_at) = ?", (month,)
                )

            return DashboardStats(
                total_users=users,
                total_hosts=hosts,
                total_listings=listings,
                active_bookings=active,
                pending_approvals=pending,
                monthly_revenue=_major_total(revenue_rows),
                user_growth=growth_percent(per_month("users", this_month), per_month("users", last_month)),
                booking_growth=growth_percent(
                    per_month("bookings", this_month), per_month("bookings", last_month)
                ),
            )
        finally:
            conn.close()

    @classmethod
    async def analytics(cls, months: int = 6, today: Optional[date] = None) -> Analytics:
        keys = previous_months(months, today)
        first = f"{keys[0]}-01"
        conn = get_connection()
        try:
            def counts(table: str) -> Dict[str, int]:
                rows = conn.execute(
                    f"SELECT strftime('%Y-%m', created_at) AS month, COUNT(*) AS n FROM {table}"
                    " WHERE created_at >= ? GROUP BY month",
                    (first,),
                ).fetchall()
                return {row["month"]: row["n"] for row in rows}

            users = counts("users")
            bookings = counts("bookings")

            revenue: Dict[str, List[sqlite3.Row]] = {}
            for row in conn.execute(
                "SELECT strftime('%Y-%m', created_at) AS month, currency, SUM(amount) AS total FROM payments"
                " WHERE status = 'succeeded' AND created_at >= ? GROUP BY month, currency",
                (first,),
            ).fetchall():
                revenue.setdefault(row["month"], []).append(row)

            top_locations = [
                LabelCount(label=row["city"], count=row["n"])
                for row in conn.execute(
                    "SELECT l.city, COUNT(*) AS n FROM bookings b JOIN listings l ON l.id = b.listing_id"
                    f" WHERE b.status IN ({_placeholders(STAY_STATUSES)})"
                    " GROUP BY l.city ORDER BY n DESC, l.city LIMIT 5",
                    STAY_STATUSES,
                ).fetchall()
            ]
            property_types = [
                LabelCount(label=row["property_type"], count=row["n"])
                for row in conn.execute(
                    "SELECT property_type, COUNT(*) AS n FROM listings WHERE status = 'active'"
                    " GROUP BY property_type ORDER BY n DESC, property_type"
                ).fetchall()
            ]
            avg_value = conn.execute(
                f"SELECT AVG(total) FROM bookings WHERE status IN ({_placeholders(STAY_STATUSES)})",
                STAY_STATUSES,
            ).fetchone()[0]
            guests = conn.execute(
                "SELECT COUNT(*) AS guests, SUM(CASE WHEN n > 1 THEN 1 ELSE 0 END) AS repeat_guests"
                " FROM (SELECT guest_id, COUNT(*) AS n FROM bookings"
                f"       WHERE status IN ({_placeholders(STAY_STATUSES)}) GROUP BY guest_id)",
                STAY_STATUSES,
            ).fetchone()
            repeat_rate = round(guests["repeat_guests"] / guests["guests"] * 100, 1) if guests["guests"] else 0.0

            return Analytics(
                user_growth=[MonthlyValue(month=k, value=users.get(k, 0)) for k in keys],
                booking_trends=[MonthlyValue(month=k, value=bookings.get(k, 0)) for k in keys],
                revenue_data=[MonthlyValue(month=k, value=_major_total(revenue.get(k, []))) for k in keys],
                top_locations=top_locations,
                property_types=property_types,
                avg_booking_value=float(round_money(avg_value or 0)),
                repeat_guest_rate=repeat_rate,
            )
        finally:
            conn.close()

    @classmethod
    async def payment_stats(cls) -> PaymentStats:
        """Totals over all payments.

        Pending payouts are what hosts are owed for succeeded payments
        minus platform fees and transfers already made.
        """
        conn = get_connection()
        try:
            succeeded = conn.execute(
                "SELECT currency, SUM(amount) AS total FROM payments WHERE status = 'succeeded' GROUP BY currency"
            ).fetchall()
            fees = conn.execute(
                "SELECT currency, SUM(application_fee) AS total FROM payments"
                " WHERE status = 'succeeded' GROUP BY currency"
            ).fetchall()
            refunded = conn.execute(
                "SELECT currency, SUM(refunded_amount) AS total FROM payments GROUP BY currency"
            ).fetchall()
            transfers = conn.execute(
                "SELECT currency, SUM(amount) AS total FROM transfers GROUP BY currency"
            ).fetchall()
        finally:
            conn.close()
        total_revenue = _major_total(succeeded)
        platform_fees = _major_total(fees)
        completed = _major_total(transfers)
        pending = max(0.0, float(round_money(total_revenue - platform_fees - completed)))
        return PaymentStats(
            total_revenue=total_revenue,
            platform_fees=platform_fees,
            refunded=_major_total(refunded),
            completed_payouts=completed,
            pending_payouts=pending,
        )
