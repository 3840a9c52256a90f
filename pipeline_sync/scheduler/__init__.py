"""Scheduler service for auto-sync ticks and one-shot timers."""

from .service import AUTO_SYNC_JOB_ID, SchedulerService, TimerHandle

__all__ = ["SchedulerService", "TimerHandle", "AUTO_SYNC_JOB_ID"]
