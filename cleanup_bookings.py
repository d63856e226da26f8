#!/usr/bin/env python3
"""
Run the booking cleanup once against the Enatbet SQLite database.

Expires unpaid booking holds, cancels payments stuck in processing,
marks past stays as completed and prunes old calendar blocks.  This is
the same job the scheduler triggers through
``GET /api/v1/cron/cleanup-bookings``; use it from a crontab when the
API is not reachable or for one-off maintenance.

Usage:
    python cleanup_bookings.py --db ./enatbet.db
"""

import argparse
import asyncio
import os
import sys

from enatbet_api.app.core.config import settings
from enatbet_api.app.core.db import init_db
from enatbet_api.app.core.logging_config import setup_logging
from enatbet_api.app.services.maintenance_service import MaintenanceService


def main() -> None:
    ap = argparse.ArgumentParser(description="Expire booking holds and complete past stays (SQLite).")
    ap.add_argument("--db", help="Path to SQLite DB file (defaults to DATABASE_URL)")
    ap.add_argument("--log-level", default=settings.log_level, help="Logging level, e.g. DEBUG")
    args = ap.parse_args()

    if args.db:
        if not os.path.exists(args.db):
            print(f"[!] DB not found: {args.db}", file=sys.stderr)
            sys.exit(1)
        settings.database_url = os.path.abspath(args.db)

    setup_logging(args.log_level)
    init_db()
    result = asyncio.run(MaintenanceService.cleanup_bookings())
    print(
        f"[+] Cleaned {result.cleaned_count} item(s): {result.expired_holds} expired hold(s), "
        f"{result.stale_payments} stale payment(s), {result.completed_stays} completed stay(s), "
        f"{result.removed_blocks} calendar block(s)"
    )


if __name__ == "__main__":
    main()
