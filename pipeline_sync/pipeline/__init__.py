"""Pipeline state machine: reducer, activity log, freshness and orchestration."""

from .actions import (
    ActivityLogCleared,
    ActivityNoted,
    ConnectionChanged,
    FreshnessChecked,
    PipelineStopped,
    ResetToIdle,
    RunStarted,
    SyncSkipped,
    TriggerAccepted,
    TriggerFailed,
)
from .activity import (
    ACTIVITY_LOG_CAPACITY,
    DISCOVERY_CAPACITY,
    append_entry,
    prepend_bounded,
)
from .freshness import compute_freshness, is_recent
from .models import Notice, ReduceResult, ScheduleTerminalReset
from .orchestrator import SyncOrchestrator, log_notice
from .reducer import ALLOWED_TRANSITIONS, can_transition, reduce

__all__ = [
    "SyncOrchestrator",
    "reduce",
    "can_transition",
    "ALLOWED_TRANSITIONS",
    "ReduceResult",
    "Notice",
    "ScheduleTerminalReset",
    "log_notice",
    "append_entry",
    "prepend_bounded",
    "ACTIVITY_LOG_CAPACITY",
    "DISCOVERY_CAPACITY",
    "compute_freshness",
    "is_recent",
    "RunStarted",
    "TriggerAccepted",
    "TriggerFailed",
    "SyncSkipped",
    "ConnectionChanged",
    "ResetToIdle",
    "PipelineStopped",
    "FreshnessChecked",
    "ActivityNoted",
    "ActivityLogCleared",
]
