"""
Service layer for platform settings.

Settings are key/value rows in the ``settings`` table with a ``type``
column that drives conversion back to Python values.  Keys missing from
the table fall back to the defaults declared on ``PlatformSettings``,
so a fresh database behaves sensibly without any seeding.
"""

import logging
import sqlite3
from typing import Any, Dict

from enatbet_api.app.core.db import get_connection
from enatbet_api.app.schemas.admin import PlatformSettings, PlatformSettingsUpdate
from enatbet_api.app.services.audit_service import AuditService

logger = logging.getLogger(__name__)

_TYPES: Dict[type, str] = {bool: "bool", int: "int", float: "float", str: "string"}


def _type_name(key: str) -> str:
    default = PlatformSettings.model_fields[key].default
    return _TYPES[type(default)]


def read_platform_settings(conn: sqlite3.Connection) -> PlatformSettings:
    """Load settings using an already open connection (e.g. inside a transaction)."""
    values: Dict[str, Any] = {}
    for row in conn.execute("SELECT key, value, type FROM settings").fetchall():
        if row["key"] in PlatformSettings.model_fields:
            values[row["key"]] = SettingsService._deserialize(row["value"], row["type"])
    return PlatformSettings(**values)


class SettingsService:
    """Service for reading and changing platform settings."""

    @classmethod
    async def get_settings(cls) -> PlatformSettings:
        conn = get_connection()
        try:
            return read_platform_settings(conn)
        finally:
            conn.close()

    @classmethod
    async def update_settings(cls, data: PlatformSettingsUpdate, user_id: int) -> PlatformSettings:
        """Persist the provided keys and return the merged settings.

        Raises ``ValueError`` when the result would allow a minimum
        stay longer than the maximum.
        """
        changes = data.model_dump(exclude_none=True)
        conn = get_connection()
        try:
            current = read_platform_settings(conn)
            merged = current.model_copy(update=changes)
            if merged.min_booking_days > merged.max_booking_days:
                raise ValueError("min_booking_days cannot exceed max_booking_days")
            for key, value in changes.items():
                type_str = _type_name(key)
                conn.execute(
                    "INSERT INTO settings (key, value, type) VALUES (?, ?, ?)"
                    " ON CONFLICT(key) DO UPDATE SET value = excluded.value, type = excluded.type",
                    (key, cls._serialize(value, type_str), type_str),
                )
            conn.commit()
        finally:
            conn.close()
        logger.info("Platform settings updated by user %s: %s", user_id, sorted(changes))
        await AuditService.record(
            user_id=user_id,
            action="update",
            object_type="setting",
            details=changes,
        )
        return merged

    @staticmethod
    def _serialize(value: Any, type_str: str) -> str:
        if type_str == "int":
            return str(int(value))
        if type_str == "float":
            return str(float(value))
        if type_str == "bool":
            return "1" if bool(value) else "0"
        return str(value)

    @staticmethod
    def _deserialize(value: str, type_str: str) -> Any:
        if value is None:
            return None
        if type_str == "int":
            return int(value)
        if type_str == "float":
            return float(value)
        if type_str == "bool":
            return value in {"1", "true", "True"}
        return value
