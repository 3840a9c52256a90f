"""Pure state transitions for the pipeline sync state.

``reduce(state, event, now)`` is total: every state accepts every wire
event and local action. Unknown inputs leave the state unchanged. Side
effects are returned as descriptors and run by the orchestrator.
"""

import math
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Type

from pipeline_sync.domain.events import (
    CompanyDiscoveredEvent,
    CompleteEvent,
    ConnectedEvent,
    EmailsFetchedEvent,
    ErrorEvent,
    ProcessingEmailEvent,
    StatusEvent,
)
from pipeline_sync.domain.models import (
    DataFreshness,
    PipelineMetrics,
    PipelineState,
    PipelineStatus,
    Severity,
)

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
from .activity import DISCOVERY_CAPACITY, append_entry, prepend_bounded
from .freshness import compute_freshness
from .models import Notice, ReduceResult, ScheduleTerminalReset

S = PipelineStatus

ALLOWED_TRANSITIONS: Dict[PipelineStatus, frozenset] = {
    S.IDLE: frozenset({S.CONNECTING, S.ERROR}),
    S.CONNECTING: frozenset({S.FETCHING, S.EXTRACTING, S.PROCESSING, S.COMPLETE, S.ERROR, S.IDLE}),
    S.FETCHING: frozenset({S.EXTRACTING, S.PROCESSING, S.COMPLETE, S.ERROR, S.IDLE}),
    S.EXTRACTING: frozenset({S.FETCHING, S.PROCESSING, S.COMPLETE, S.ERROR, S.IDLE}),
    S.PROCESSING: frozenset({S.FETCHING, S.EXTRACTING, S.COMPLETE, S.ERROR, S.IDLE}),
    S.COMPLETE: frozenset({S.IDLE}),
    S.ERROR: frozenset({S.IDLE}),
}

DEFAULT_ERROR_MESSAGE = "An error occurred during pipeline execution"
START_MESSAGE = "Starting pipeline..."


def can_transition(current: PipelineStatus, target: PipelineStatus) -> bool:
    """True when ``current -> target`` is an edge of the status graph (or no change)."""
    return target == current or target in ALLOWED_TRANSITIONS[current]


def reduce(state: PipelineState, event: Any, now: datetime) -> ReduceResult:
    """
    Apply one event to the state.

    Args:
        state: Current state (never modified)
        event: A stream event or a local action
        now: Current UTC time; the reducer never reads the clock itself

    Returns:
        ReduceResult with the next state and any effects to run
    """
    handler = _HANDLERS.get(type(event))
    if handler is None:
        return ReduceResult(state=state)
    return handler(state, event, now)


# Helpers


def _clamp_progress(value: int) -> int:
    return max(0, min(100, int(value)))


def _merge_progress(state: PipelineState, value: Optional[int]) -> int:
    if value is None:
        return state.progress
    clamped = _clamp_progress(value)
    if state.status.is_active or state.status.is_terminal:
        return max(state.progress, clamped)
    return clamped


def _merge_metrics(state: PipelineState, stats: Optional[PipelineMetrics]) -> PipelineMetrics:
    if stats is None:
        return state.metrics
    return state.metrics.merge_max(stats)


def _next_status(state: PipelineState, target: Optional[PipelineStatus]) -> PipelineStatus:
    if target is None or not can_transition(state.status, target):
        return state.status
    return target


def _round_half_up(value: float) -> int:
    """Round .5 away from zero for the non-negative values used here (round() rounds to even)."""
    return int(math.floor(value + 0.5))


def _log(state: PipelineState, message: str, severity: Severity, now: datetime):
    return append_entry(state.activity_log, message, severity, now)


# Wire events


def _on_connected(state: PipelineState, event: ConnectedEvent, now: datetime) -> ReduceResult:
    return ReduceResult(
        state=state.model_copy(
            update={
                "is_connected": True,
                "connection_error": None,
                "activity_log": _log(state, "Connected to pipeline stream", Severity.SUCCESS, now),
            }
        )
    )


def _on_status(state: PipelineState, event: StatusEvent, now: datetime) -> ReduceResult:
    # Terminal statuses carry their own bookkeeping and effects
    if event.status == S.COMPLETE:
        return _on_complete(state, CompleteEvent(message=event.message, stats=event.stats), now)
    if event.status == S.ERROR:
        return _on_error(state, ErrorEvent(message=event.message), now)

    changes = {
        "status": _next_status(state, event.status),
        "progress": _merge_progress(state, event.progress),
        "metrics": _merge_metrics(state, event.stats),
        "activity_log": _log(state, event.message or "Status update", Severity.INFO, now),
    }
    if event.message:
        changes["message"] = event.message
    return ReduceResult(state=state.model_copy(update=changes))


def _on_emails_fetched(state: PipelineState, event: EmailsFetchedEvent, now: datetime) -> ReduceResult:
    count = event.email_count or 0
    changes = {
        "status": _next_status(state, S.FETCHING),
        "progress": _merge_progress(state, event.progress),
        "metrics": _merge_metrics(state, event.stats),
        "activity_log": _log(state, f"Found {count} newsletters to analyze", Severity.INFO, now),
    }
    if count:
        changes["total_emails"] = count
    if event.message:
        changes["message"] = event.message
    return ReduceResult(state=state.model_copy(update=changes))


def _on_processing_email(state: PipelineState, event: ProcessingEmailEvent, now: datetime) -> ReduceResult:
    current = state.current_email if event.current_email is None else event.current_email
    total = state.total_emails if event.total_emails is None else event.total_emails
    if total > 0:
        current = min(current, total)

    progress = event.progress
    if progress is None and total > 0:
        progress = min(99, _round_half_up(current / total * 100))

    metrics = _merge_metrics(state, event.stats)
    eta = state.estimated_time_remaining

    # Rate is computed locally from elapsed wall time, never taken from the payload
    if state.start_time is not None and current > 0:
        elapsed_minutes = (now - state.start_time).total_seconds() / 60.0
        if elapsed_minutes > 0:
            rate = _round_half_up(current / elapsed_minutes)
            metrics = metrics.model_copy(update={"processing_rate": rate})
            if total > 0 and rate > 0:
                eta = _round_half_up((total - current) / rate * 60)

    changes = {
        "status": _next_status(state, S.PROCESSING),
        "current_email": current,
        "total_emails": total,
        "progress": _merge_progress(state, progress),
        "metrics": metrics,
        "estimated_time_remaining": eta,
    }
    if event.message:
        changes["message"] = event.message
    return ReduceResult(state=state.model_copy(update=changes))


def _on_company_discovered(state: PipelineState, event: CompanyDiscoveredEvent, now: datetime) -> ReduceResult:
    changes = {"metrics": _merge_metrics(state, event.stats)}

    if event.company is not None:
        discovery = event.company.model_copy(update={"timestamp": now})
        changes["recent_discoveries"] = prepend_bounded(
            state.recent_discoveries, discovery, DISCOVERY_CAPACITY
        )
        if discovery.is_new:
            changes["activity_log"] = _log(
                state, f"New company discovered: {discovery.name}", Severity.SUCCESS, now
            )

    return ReduceResult(state=state.model_copy(update=changes))


def _on_complete(state: PipelineState, event: CompleteEvent, now: datetime) -> ReduceResult:
    # A late or duplicate terminal event outside a run must not toast again
    if not state.is_running:
        return ReduceResult(state=state)

    metrics = _merge_metrics(state, event.stats)
    changes = {
        "status": S.COMPLETE,
        "progress": 100,
        "end_time": now,
        "last_sync_time": now,
        "last_sync_success": True,
        "data_freshness": DataFreshness.FRESH,
        "metrics": metrics,
        "estimated_time_remaining": None,
        "activity_log": _log(state, "Pipeline completed successfully", Severity.SUCCESS, now),
    }
    if event.message:
        changes["message"] = event.message

    notice = Notice(
        title="Pipeline Complete",
        description=(
            f"Discovered {metrics.companies_extracted} companies "
            f"from {metrics.emails_fetched} emails"
        ),
    )
    return ReduceResult(
        state=state.model_copy(update=changes),
        effects=[notice, ScheduleTerminalReset()],
    )


def _on_error(state: PipelineState, event: ErrorEvent, now: datetime) -> ReduceResult:
    if not state.is_running:
        return ReduceResult(state=state)
    return _fail(state, event.message or DEFAULT_ERROR_MESSAGE, now)


def _fail(state: PipelineState, message: str, now: datetime, **extra) -> ReduceResult:
    changes = {
        "status": S.ERROR,
        "end_time": now,
        "last_sync_success": False,
        "connection_error": message,
        "estimated_time_remaining": None,
        "activity_log": _log(state, f"Error: {message}", Severity.ERROR, now),
        **extra,
    }
    return ReduceResult(
        state=state.model_copy(update=changes),
        effects=[
            Notice(title="Pipeline Error", description=message, variant="destructive"),
            ScheduleTerminalReset(),
        ],
    )


# Local actions


def _on_run_started(state: PipelineState, action: RunStarted, now: datetime) -> ReduceResult:
    return ReduceResult(
        state=state.model_copy(
            update={
                "status": S.CONNECTING,
                "progress": 0,
                "message": START_MESSAGE,
                "start_time": now,
                "end_time": None,
                "current_email": 0,
                "total_emails": 0,
                "estimated_time_remaining": None,
                "metrics": PipelineMetrics(),
                "recent_discoveries": [],
                "activity_log": [],
                "connection_error": None,
            }
        )
    )


def _on_trigger_accepted(state: PipelineState, action: TriggerAccepted, now: datetime) -> ReduceResult:
    return ReduceResult(
        state=state.model_copy(
            update={"activity_log": _log(state, "Pipeline started", Severity.SUCCESS, now)}
        )
    )


def _on_trigger_failed(state: PipelineState, action: TriggerFailed, now: datetime) -> ReduceResult:
    metrics = action.previous_metrics if action.previous_metrics is not None else state.metrics
    if not state.is_running:
        # The stream already reported the failure; only roll the counters back
        return ReduceResult(state=state.model_copy(update={"metrics": metrics}))
    return _fail(state, action.message or "Failed to start pipeline", now, metrics=metrics)


def _on_sync_skipped(state: PipelineState, action: SyncSkipped, now: datetime) -> ReduceResult:
    last_sync = action.last_sync or state.last_sync_time
    changes = {
        "last_sync_time": last_sync,
        "data_freshness": compute_freshness(last_sync, now),
        "activity_log": _log(state, "Data is still fresh, sync skipped", Severity.INFO, now),
    }
    if action.stats is not None:
        changes["metrics"] = action.stats
    elif action.previous_metrics is not None:
        changes["metrics"] = action.previous_metrics
    if state.is_running:
        changes.update({"status": S.IDLE, "message": "", "end_time": now})

    notice = Notice(
        title="Data is Fresh",
        description="The backend skipped this sync because its data is still fresh.",
    )
    return ReduceResult(state=state.model_copy(update=changes), effects=[notice])


def _on_connection_changed(state: PipelineState, action: ConnectionChanged, now: datetime) -> ReduceResult:
    if action.fatal and state.is_running:
        # Reconnects are exhausted; the run can no longer be followed
        return _fail(state, action.error or DEFAULT_ERROR_MESSAGE, now, is_connected=False)

    changes = {"is_connected": action.is_connected}
    if action.is_connected:
        changes["connection_error"] = None
    elif not action.keep_error:
        changes["connection_error"] = action.error
    return ReduceResult(state=state.model_copy(update=changes))


def _on_reset_to_idle(state: PipelineState, action: ResetToIdle, now: datetime) -> ReduceResult:
    if not state.status.is_terminal:
        return ReduceResult(state=state)
    return ReduceResult(state=state.model_copy(update={"status": S.IDLE, "message": ""}))


def _on_pipeline_stopped(state: PipelineState, action: PipelineStopped, now: datetime) -> ReduceResult:
    changes = {
        "status": S.IDLE,
        "message": "",
        "estimated_time_remaining": None,
        "activity_log": _log(state, "Pipeline stopped", Severity.WARNING, now),
    }
    if state.is_running:
        changes["end_time"] = now
    return ReduceResult(state=state.model_copy(update=changes))


def _on_freshness_checked(state: PipelineState, action: FreshnessChecked, now: datetime) -> ReduceResult:
    last_sync = action.last_sync or state.last_sync_time
    changes = {
        "last_sync_time": last_sync,
        "data_freshness": compute_freshness(last_sync, now),
    }
    if action.stats is not None and not state.is_running:
        changes["metrics"] = action.stats
    return ReduceResult(state=state.model_copy(update=changes))


def _on_activity_noted(state: PipelineState, action: ActivityNoted, now: datetime) -> ReduceResult:
    return ReduceResult(
        state=state.model_copy(
            update={"activity_log": _log(state, action.message, action.severity, now)}
        )
    )


def _on_activity_log_cleared(state: PipelineState, action: ActivityLogCleared, now: datetime) -> ReduceResult:
    return ReduceResult(state=state.model_copy(update={"activity_log": []}))


_HANDLERS: Dict[Type, Callable[[PipelineState, Any, datetime], ReduceResult]] = {
    ConnectedEvent: _on_connected,
    StatusEvent: _on_status,
    EmailsFetchedEvent: _on_emails_fetched,
    ProcessingEmailEvent: _on_processing_email,
    CompanyDiscoveredEvent: _on_company_discovered,
    CompleteEvent: _on_complete,
    ErrorEvent: _on_error,
    RunStarted: _on_run_started,
    TriggerAccepted: _on_trigger_accepted,
    TriggerFailed: _on_trigger_failed,
    SyncSkipped: _on_sync_skipped,
    ConnectionChanged: _on_connection_changed,
    ResetToIdle: _on_reset_to_idle,
    PipelineStopped: _on_pipeline_stopped,
    FreshnessChecked: _on_freshness_checked,
    ActivityNoted: _on_activity_noted,
    ActivityLogCleared: _on_activity_log_cleared,
}
