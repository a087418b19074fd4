"""
Timestamp utilities for consistent time handling across the system.

All stored timestamps are timezone-aware UTC ISO-8601 strings so that
lexicographic order in the store matches chronological order.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime] = None) -> str:
    """Convert a datetime to the stored ISO string (now when None)."""
    if value is None:
        value = utc_now()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec='microseconds')


def to_datetime(value: Union[str, int, float, datetime, None]) -> Optional[datetime]:
    """Parse a stored timestamp (ISO string or unix seconds) into an aware datetime.

    Returns:
        datetime object, or None for empty/unparseable input
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def days_ago(days: float, now: Optional[datetime] = None) -> datetime:
    """Datetime ``days`` before ``now``."""
    return (now or utc_now()) - timedelta(days=days)
