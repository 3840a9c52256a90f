"""Bounded newest-first lists for the activity log and live discoveries."""

from datetime import datetime
from typing import List, Sequence, TypeVar

from pipeline_sync.domain.models import ActivityLogEntry, Severity
from pipeline_sync.utils.timestamps import epoch_millis

ACTIVITY_LOG_CAPACITY = 100
DISCOVERY_CAPACITY = 50

T = TypeVar("T")


def prepend_bounded(items: Sequence[T], item: T, capacity: int) -> List[T]:
    """
    Return a new list with ``item`` first, truncated to ``capacity``.

    The oldest entries (at the end) are dropped first.
    """
    if capacity <= 0:
        return []
    return [item, *items[: capacity - 1]]


def append_entry(
    entries: Sequence[ActivityLogEntry],
    message: str,
    severity: Severity,
    now: datetime,
    capacity: int = ACTIVITY_LOG_CAPACITY,
) -> List[ActivityLogEntry]:
    """
    Add one entry to the head of the activity log.

    Args:
        entries: Current log, newest first
        message: Human-readable line
        severity: Display severity
        now: Timestamp for the entry
        capacity: Maximum number of entries kept

    Returns:
        New list; the input is not modified
    """
    sequence = entries[0].sequence + 1 if entries else 1
    entry = ActivityLogEntry(
        id=f"{epoch_millis(now)}-{sequence}",
        message=message,
        severity=severity,
        timestamp=now,
        sequence=sequence,
    )
    return prepend_bounded(entries, entry, capacity)
