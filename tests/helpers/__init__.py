"""Test helper utilities for pipeline sync tests."""

from .fakes import (
    DEFAULT_START,
    FakeClock,
    FakeEventSource,
    FakeSourceFactory,
    FakeTimer,
    FakeTimers,
)

__all__ = [
    "DEFAULT_START",
    "FakeClock",
    "FakeTimer",
    "FakeTimers",
    "FakeEventSource",
    "FakeSourceFactory",
]
