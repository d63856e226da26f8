"""
SQLite database integration and simple migration system.

This module provides functions for obtaining a database connection
(``get_connection``), running a block of statements inside a single
write transaction (``transaction``) and applying migrations on
application start (``init_db``).

Writes that must observe a consistent view of the data (availability
checks followed by an insert, webhook ledger entries together with the
state change they record) go through ``transaction``, which opens the
transaction with ``BEGIN IMMEDIATE`` so that the write lock is taken
before the first read.

The migration mechanism stores applied migration versions in the
``migrations`` table and executes new migrations in order.
"""

import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .config import settings


def get_database_path() -> str:
    """Compute the path to the SQLite database file.

    If ``settings.database_url`` is an absolute path, use it directly.
    Otherwise resolve it relative to the project root.
    """
    db_url = settings.database_url
    if os.path.isabs(db_url):
        return db_url
    base_dir = Path(__file__).resolve().parent.parent.parent.parent
    return str((base_dir / db_url).resolve())


def get_connection() -> sqlite3.Connection:
    """Create and return a new SQLite connection.

    Rows are returned as ``sqlite3.Row`` objects so columns can be
    accessed by name.  Foreign key enforcement is switched on for the
    lifetime of the connection.
    """
    conn = sqlite3.connect(get_database_path(), timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def get_cursor() -> Iterator[sqlite3.Cursor]:
    """Context manager that yields a cursor, commits and closes the connection on exit."""
    conn = get_connection()
    try:
        yield conn.cursor()
        conn.commit()
    finally:
        conn.close()


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    """Run the enclosed statements in one ``BEGIN IMMEDIATE`` transaction.

    The transaction is committed when the block exits normally and
    rolled back when it raises; the exception propagates.
    """
    conn = get_connection()
    conn.isolation_level = None
    try:
        conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.execute("COMMIT")
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    finally:
        conn.close()


def init_db() -> None:
    """Initialise the database and apply pending migrations.

    If you add a new migration, append it with an incremented version
    number; never edit one that has shipped.
    """
    migrations: list[tuple[int, str]] = [
        # Migration 1: core marketplace schema
        (
            1,
            """
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                firebase_uid TEXT NOT NULL UNIQUE,
                email TEXT,
                full_name TEXT,
                phone TEXT,
                photo_url TEXT,
                language TEXT NOT NULL DEFAULT 'en',
                role TEXT NOT NULL DEFAULT 'guest',
                status TEXT NOT NULL DEFAULT 'active',
                stripe_customer_id TEXT,
                stripe_connect_account_id TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS listings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                host_id INTEGER NOT NULL,
                title TEXT NOT NULL,
                description TEXT NOT NULL,
                property_type TEXT NOT NULL DEFAULT 'apartment',
                room_type TEXT NOT NULL DEFAULT 'entire_place',
                address TEXT,
                city TEXT NOT NULL,
                country TEXT NOT NULL,
                latitude REAL,
                longitude REAL,
                price_per_night REAL NOT NULL,
                currency TEXT NOT NULL DEFAULT 'USD',
                cleaning_fee REAL NOT NULL DEFAULT 0,
                max_guests INTEGER NOT NULL DEFAULT 1,
                bedrooms INTEGER NOT NULL DEFAULT 1,
                beds INTEGER NOT NULL DEFAULT 1,
                bathrooms REAL NOT NULL DEFAULT 1,
                min_nights INTEGER NOT NULL DEFAULT 1,
                max_nights INTEGER NOT NULL DEFAULT 365,
                advance_notice_days INTEGER NOT NULL DEFAULT 0,
                check_in_time TEXT NOT NULL DEFAULT '15:00',
                cancel_policy TEXT NOT NULL DEFAULT 'moderate',
                instant_book INTEGER NOT NULL DEFAULT 0,
                amenities TEXT,
                images TEXT,
                status TEXT NOT NULL DEFAULT 'pending_approval',
                rating REAL NOT NULL DEFAULT 0,
                review_count INTEGER NOT NULL DEFAULT 0,
                bookings_count INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY(host_id) REFERENCES users(id)
            );

            CREATE TABLE IF NOT EXISTS bookings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                listing_id INTEGER NOT NULL,
                guest_id INTEGER NOT NULL,
                host_id INTEGER NOT NULL,
                check_in TEXT NOT NULL,
                check_out TEXT NOT NULL,
                nights INTEGER NOT NULL,
                guests TEXT NOT NULL,
                guest_count INTEGER NOT NULL,
                special_requests TEXT,
                currency TEXT NOT NULL,
                price_per_night REAL NOT NULL,
                subtotal REAL NOT NULL,
                cleaning_fee REAL NOT NULL DEFAULT 0,
                service_fee REAL NOT NULL DEFAULT 0,
                taxes REAL NOT NULL DEFAULT 0,
                total REAL NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending_payment',
                confirmation_code TEXT NOT NULL UNIQUE,
                expires_at TIMESTAMP,
                payment_intent_id TEXT,
                charge_id TEXT,
                receipt_url TEXT,
                confirmed_at TIMESTAMP,
                completed_at TIMESTAMP,
                cancelled_at TIMESTAMP,
                cancelled_by TEXT,
                cancellation_reason TEXT,
                refund_amount REAL,
                dispute_id TEXT,
                dispute_reason TEXT,
                disputed_at TIMESTAMP,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY(listing_id) REFERENCES listings(id),
                FOREIGN KEY(guest_id) REFERENCES users(id),
                FOREIGN KEY(host_id) REFERENCES users(id)
            );

            -- Amounts are stored in minor units as reported by Stripe.
            CREATE TABLE IF NOT EXISTS payments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                booking_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                payment_intent_id TEXT NOT NULL UNIQUE,
                amount INTEGER NOT NULL,
                currency TEXT NOT NULL,
                application_fee INTEGER NOT NULL DEFAULT 0,
                status TEXT NOT NULL DEFAULT 'pending',
                type TEXT NOT NULL DEFAULT 'booking_payment',
                refunded_amount INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY(booking_id) REFERENCES bookings(id),
                FOREIGN KEY(user_id) REFERENCES users(id)
            );

            CREATE TABLE IF NOT EXISTS reviews (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                booking_id INTEGER NOT NULL,
                listing_id INTEGER NOT NULL,
                reviewer_id INTEGER NOT NULL,
                reviewee_id INTEGER NOT NULL,
                type TEXT NOT NULL,
                rating INTEGER NOT NULL,
                cleanliness INTEGER,
                accuracy INTEGER,
                communication INTEGER,
                location INTEGER,
                value INTEGER,
                comment TEXT NOT NULL,
                response TEXT,
                response_at TIMESTAMP,
                status TEXT NOT NULL DEFAULT 'published',
                flagged_count INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE(booking_id, reviewer_id, type),
                FOREIGN KEY(booking_id) REFERENCES bookings(id),
                FOREIGN KEY(listing_id) REFERENCES listings(id),
                FOREIGN KEY(reviewer_id) REFERENCES users(id),
                FOREIGN KEY(reviewee_id) REFERENCES users(id)
            );

            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT,
                type TEXT NOT NULL DEFAULT 'string'
            );

            CREATE TABLE IF NOT EXISTS audit_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER,
                action TEXT NOT NULL,
                object_type TEXT NOT NULL,
                object_id INTEGER,
                details TEXT,
                timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            """,
        ),
        # Migration 2: calendar blocks and Stripe bookkeeping
        (
            2,
            """
            CREATE TABLE IF NOT EXISTS calendar_blocks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                listing_id INTEGER NOT NULL,
                booking_id INTEGER,
                start_date TEXT NOT NULL,
                end_date TEXT NOT NULL,
                type TEXT NOT NULL DEFAULT 'host_block',
                reason TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY(listing_id) REFERENCES listings(id),
                FOREIGN KEY(booking_id) REFERENCES bookings(id)
            );

            -- One row per processed Stripe event; the primary key makes
            -- redelivered events detectable.
            CREATE TABLE IF NOT EXISTS webhook_events (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL,
                livemode INTEGER NOT NULL DEFAULT 0,
                processed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS transfers (
                id TEXT PRIMARY KEY,
                amount INTEGER NOT NULL,
                currency TEXT NOT NULL,
                destination TEXT,
                booking_id INTEGER,
                payment_intent_id TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS admin_alerts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                type TEXT NOT NULL,
                booking_id INTEGER,
                dispute_id TEXT,
                amount INTEGER,
                details TEXT,
                resolved INTEGER NOT NULL DEFAULT 0,
                resolved_by INTEGER,
                resolved_at TIMESTAMP,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            """,
        ),
        # Migration 3: messaging, favorites and in-app notifications
        (
            3,
            """
            CREATE TABLE IF NOT EXISTS conversations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                listing_id INTEGER,
                booking_id INTEGER,
                last_message TEXT,
                last_message_at TIMESTAMP,
                last_sender_id INTEGER,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY(listing_id) REFERENCES listings(id),
                FOREIGN KEY(booking_id) REFERENCES bookings(id)
            );

            CREATE TABLE IF NOT EXISTS conversation_participants (
                conversation_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                unread_count INTEGER NOT NULL DEFAULT 0,
                last_read_at TIMESTAMP,
                PRIMARY KEY(conversation_id, user_id),
                FOREIGN KEY(conversation_id) REFERENCES conversations(id),
                FOREIGN KEY(user_id) REFERENCES users(id)
            );

            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id INTEGER NOT NULL,
                sender_id INTEGER NOT NULL,
                content TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY(conversation_id) REFERENCES conversations(id),
                FOREIGN KEY(sender_id) REFERENCES users(id)
            );

            CREATE TABLE IF NOT EXISTS favorites (
                user_id INTEGER NOT NULL,
                listing_id INTEGER NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY(user_id, listing_id),
                FOREIGN KEY(user_id) REFERENCES users(id),
                FOREIGN KEY(listing_id) REFERENCES listings(id)
            );

            CREATE TABLE IF NOT EXISTS notifications (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                type TEXT NOT NULL,
                title TEXT NOT NULL,
                body TEXT,
                data TEXT,
                is_read INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY(user_id) REFERENCES users(id)
            );
            """,
        ),
        # Migration 4: lookup indices
        (
            4,
            """
            CREATE INDEX IF NOT EXISTS idx_listings_city ON listings(city);
            CREATE INDEX IF NOT EXISTS idx_listings_host ON listings(host_id);
            CREATE INDEX IF NOT EXISTS idx_bookings_listing_status ON bookings(listing_id, status);
            CREATE INDEX IF NOT EXISTS idx_bookings_guest ON bookings(guest_id);
            CREATE INDEX IF NOT EXISTS idx_bookings_host ON bookings(host_id);
            CREATE INDEX IF NOT EXISTS idx_bookings_payment_intent ON bookings(payment_intent_id);
            CREATE INDEX IF NOT EXISTS idx_bookings_charge ON bookings(charge_id);
            CREATE INDEX IF NOT EXISTS idx_calendar_blocks_listing ON calendar_blocks(listing_id);
            CREATE INDEX IF NOT EXISTS idx_payments_user ON payments(user_id);
            CREATE INDEX IF NOT EXISTS idx_reviews_listing ON reviews(listing_id);
            CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id);
            CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id);
            """,
        ),
        # Migration 5: host applications reviewed by administrators
        (
            5,
            """
            CREATE TABLE IF NOT EXISTS host_applications (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                full_name TEXT NOT NULL,
                email TEXT NOT NULL,
                phone TEXT NOT NULL,
                property_city TEXT NOT NULL,
                property_type TEXT NOT NULL,
                message TEXT,
                status TEXT NOT NULL DEFAULT 'pending',
                rejection_reason TEXT,
                reviewed_by INTEGER,
                reviewed_at TIMESTAMP,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY(user_id) REFERENCES users(id),
                FOREIGN KEY(reviewed_by) REFERENCES users(id)
            );
            CREATE INDEX IF NOT EXISTS idx_host_applications_status ON host_applications(status);
            CREATE INDEX IF NOT EXISTS idx_host_applications_user ON host_applications(user_id);
            """,
        ),
    ]

    with get_cursor() as cursor:
        cursor.execute(
            "CREATE TABLE IF NOT EXISTS migrations (version INTEGER PRIMARY KEY)"
        )
        cursor.execute("SELECT MAX(version) as version FROM migrations")
        row = cursor.fetchone()
        current_version = row["version"] if row and row["version"] is not None else 0

        for version, sql in migrations:
            if version > current_version:
                cursor.executescript(sql)
                cursor.execute(
                    "INSERT INTO migrations (version) VALUES (?)", (version,)
                )
                current_version = version
