"""Utility functions for time handling."""

from .timestamps import (
    ensure_utc,
    epoch_millis,
    format_timestamp,
    minutes_since,
    utc_now,
)

__all__ = [
    "utc_now",
    "ensure_utc",
    "format_timestamp",
    "epoch_millis",
    "minutes_since",
]
