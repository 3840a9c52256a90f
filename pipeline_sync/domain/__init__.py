"""Domain models for pipeline state and stream events."""

from .events import (
    CompanyDiscoveredEvent,
    CompleteEvent,
    ConnectedEvent,
    EmailsFetchedEvent,
    ErrorEvent,
    HeartbeatEvent,
    ProcessingEmailEvent,
    StatusEvent,
    StreamEvent,
    StreamEventBase,
    parse_event,
)
from .models import (
    ACTIVE_STATUSES,
    ActivityLogEntry,
    CompanyDiscovery,
    DataFreshness,
    PipelineMetrics,
    PipelineState,
    PipelineStatus,
    Severity,
)

__all__ = [
    "ACTIVE_STATUSES",
    "ActivityLogEntry",
    "CompanyDiscovery",
    "DataFreshness",
    "PipelineMetrics",
    "PipelineState",
    "PipelineStatus",
    "Severity",
    "StreamEvent",
    "StreamEventBase",
    "ConnectedEvent",
    "StatusEvent",
    "EmailsFetchedEvent",
    "ProcessingEmailEvent",
    "CompanyDiscoveredEvent",
    "CompleteEvent",
    "ErrorEvent",
    "HeartbeatEvent",
    "parse_event",
]
