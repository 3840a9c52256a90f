"""Data freshness classification."""

from datetime import datetime
from typing import Optional

from pipeline_sync.domain.models import DataFreshness
from pipeline_sync.utils.timestamps import minutes_since

FRESH_MINUTES = 30
STALE_MINUTES = 120
FRESH_SKIP_MINUTES = 5


def compute_freshness(last_sync: Optional[datetime], now: datetime) -> DataFreshness:
    """
    Classify the age of the last successful sync.

    Returns:
        FRESH under 30 minutes, STALE under 120 minutes, OUTDATED otherwise,
        UNKNOWN when there has never been a sync
    """
    age = minutes_since(last_sync, now)
    if age is None:
        return DataFreshness.UNKNOWN
    if age < FRESH_MINUTES:
        return DataFreshness.FRESH
    if age < STALE_MINUTES:
        return DataFreshness.STALE
    return DataFreshness.OUTDATED


def is_recent(last_sync: Optional[datetime], now: datetime, window_minutes: float = FRESH_SKIP_MINUTES) -> bool:
    """True when the last sync happened less than ``window_minutes`` ago."""
    age = minutes_since(last_sync, now)
    return age is not None and age < window_minutes
