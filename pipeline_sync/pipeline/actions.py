"""Local actions issued by the orchestrator and the stream client.

They are reduced by the same ``reduce`` function as wire events, so every
state change goes through one place.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pipeline_sync.domain.models import PipelineMetrics, Severity


@dataclass(frozen=True)
class RunStarted:
    """A new run was requested; clears per-run fields."""

    pass


@dataclass(frozen=True)
class TriggerAccepted:
    """The backend accepted the trigger request."""

    pass


@dataclass(frozen=True)
class TriggerFailed:
    """The trigger request failed; metrics roll back to the pre-run snapshot."""

    message: str
    previous_metrics: Optional[PipelineMetrics] = None


@dataclass(frozen=True)
class SyncSkipped:
    """The backend declined to run because its data is still fresh."""

    last_sync: Optional[datetime] = None
    stats: Optional[PipelineMetrics] = None
    previous_metrics: Optional[PipelineMetrics] = None


@dataclass(frozen=True)
class ConnectionChanged:
    """Transport state reported by the stream client.

    With ``keep_error`` the current ``connection_error`` is left as is.
    ``fatal`` means the client has given up reconnecting.
    """

    is_connected: bool
    error: Optional[str] = None
    keep_error: bool = False
    fatal: bool = False


@dataclass(frozen=True)
class ResetToIdle:
    """Grace period after a terminal status has elapsed."""

    pass


@dataclass(frozen=True)
class PipelineStopped:
    """The user stopped the run."""

    pass


@dataclass(frozen=True)
class FreshnessChecked:
    """Result of a status poll against the backend."""

    last_sync: Optional[datetime] = None
    stats: Optional[PipelineMetrics] = None


@dataclass(frozen=True)
class ActivityNoted:
    message: str
    severity: Severity = Severity.INFO


@dataclass(frozen=True)
class ActivityLogCleared:
    pass
