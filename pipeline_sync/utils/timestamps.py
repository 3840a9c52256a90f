"""Timestamp utilities for UTC handling and formatting.

All timestamps inside the client are timezone-aware UTC datetimes. The
server and the persisted snapshot exchange them as ISO 8601 strings, usually
with a ``Z`` suffix as produced by JavaScript's ``Date.toISOString()``.
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime.

    Example:
        >>> utc_now().tzinfo == timezone.utc
        True
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure a datetime is timezone-aware and in UTC.

    Naive datetimes are treated as UTC; aware ones are converted.

    Args:
        dt: Datetime to convert (can be None)

    Returns:
        Timezone-aware datetime in UTC, or None if input is None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def format_timestamp(dt: Optional[datetime]) -> str:
    """Format a datetime as ISO 8601 UTC with millisecond precision and 'Z' suffix.

    Example:
        >>> format_timestamp(datetime(2025, 11, 4, 12, 0, tzinfo=timezone.utc))
        '2025-11-04T12:00:00.000Z'
    """
    dt_utc = ensure_utc(dt)
    if dt_utc is None:
        return ""
    return dt_utc.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def epoch_millis(dt: datetime) -> int:
    """Milliseconds since the Unix epoch."""
    dt_utc = ensure_utc(dt)
    return int(dt_utc.timestamp() * 1000)


def minutes_since(then: Optional[datetime], now: datetime) -> Optional[float]:
    """Elapsed minutes from ``then`` to ``now``, or None when ``then`` is unknown."""
    if then is None:
        return None
    return (ensure_utc(now) - ensure_utc(then)).total_seconds() / 60.0
