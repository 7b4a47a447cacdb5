"""
UTC helpers shared by entities and services.

SQLite drops tzinfo when it stores a ``DateTime(timezone=True)`` column, so
values read back from it are naive. ``as_utc`` normalizes them before they are
compared with aware datetimes or serialized.
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 string of a UTC-normalized datetime, or None."""
    value = as_utc(value)
    return value.isoformat() if value else None
