"""
DateTime utility functions - All operations use UTC.
Database storage, internal operations, and API responses all use UTC.
"""
from datetime import datetime, timezone
from typing import Optional


def to_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure datetime is in UTC.
    Naive datetimes (SQLite drops tzinfo on the way back) are assumed to be UTC.

    Args:
        dt: Datetime object (timezone-aware or naive)

    Returns:
        UTC datetime object, or None if input is None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def to_utc_isoformat(dt: Optional[datetime]) -> Optional[str]:
    """
    Convert datetime to UTC and return as ISO format string.
    Used for API responses (e.g., "2024-12-17T14:30:00+00:00").
    """
    utc_dt = to_utc(dt)
    if utc_dt is None:
        return None
    return utc_dt.isoformat()


def now_utc() -> datetime:
    """Current timezone-aware UTC datetime. Use this for every server-assigned timestamp."""
    return datetime.now(timezone.utc)
