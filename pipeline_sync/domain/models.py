"""Core domain models for the pipeline sync state.

- PipelineStatus / DataFreshness / Severity: enumerations shared by every layer
- PipelineMetrics: run counters as reported by the backend
- CompanyDiscovery: one company mention surfaced live during a run
- ActivityLogEntry: one human-readable line of the activity trace
- PipelineState: the session-scoped aggregate owned by the orchestrator
"""

from datetime import datetime
from enum import Enum
from typing import ClassVar, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from pipeline_sync.utils.timestamps import ensure_utc


class PipelineStatus(str, Enum):
    """Phase of the current run."""

    IDLE = "idle"
    CONNECTING = "connecting"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_active(self) -> bool:
        """True while a run is in flight."""
        return self in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineStatus.COMPLETE, PipelineStatus.ERROR)


ACTIVE_STATUSES = frozenset(
    {
        PipelineStatus.CONNECTING,
        PipelineStatus.FETCHING,
        PipelineStatus.EXTRACTING,
        PipelineStatus.PROCESSING,
    }
)


class DataFreshness(str, Enum):
    """Coarse age classification of the last successful sync."""

    FRESH = "fresh"
    STALE = "stale"
    OUTDATED = "outdated"
    UNKNOWN = "unknown"


class Severity(str, Enum):
    """Display severity of an activity log entry."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class CamelModel(BaseModel):
    """Base for models exchanged with the dashboard in camelCase JSON."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class PipelineMetrics(CamelModel):
    """Counters for a run; ``processing_rate`` is emails per minute."""

    emails_fetched: int = 0
    companies_extracted: int = 0
    new_companies: int = 0
    total_mentions: int = 0
    processing_rate: int = 0

    COUNTER_FIELDS: ClassVar[Tuple[str, ...]] = (
        "emails_fetched",
        "companies_extracted",
        "new_companies",
        "total_mentions",
    )

    def merge_max(self, other: "PipelineMetrics") -> "PipelineMetrics":
        """Per-counter maximum of both snapshots; keeps this snapshot's processing rate."""
        return self.model_copy(
            update={
                name: max(getattr(self, name), getattr(other, name))
                for name in self.COUNTER_FIELDS
            }
        )


class CompanyDiscovery(CamelModel):
    """A company mention surfaced during a run."""

    name: str = Field(..., min_length=1)
    description: str = ""
    is_new: bool = False
    source: Optional[str] = None
    timestamp: Optional[datetime] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("Company name cannot be empty or whitespace-only")
        return stripped

    @field_validator("description", mode="before")
    @classmethod
    def default_description(cls, v):
        return "" if v is None else v

    @field_validator("timestamp")
    @classmethod
    def timestamp_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)


class ActivityLogEntry(CamelModel):
    """One line of the activity trace."""

    id: str
    message: str
    severity: Severity = Severity.INFO
    timestamp: datetime
    sequence: int = 0

    @field_validator("timestamp")
    @classmethod
    def timestamp_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class PipelineState(BaseModel):
    """Session-scoped pipeline state.

    Instances are frozen: the reducer produces a new instance for every
    change, so a snapshot handed to a subscriber never changes underneath it.
    """

    model_config = ConfigDict(frozen=True)

    # Status
    status: PipelineStatus = PipelineStatus.IDLE
    progress: int = Field(0, ge=0, le=100)
    message: str = ""

    # Metrics
    metrics: PipelineMetrics = Field(default_factory=PipelineMetrics)

    # Runtime data
    current_email: int = 0
    total_emails: int = 0
    estimated_time_remaining: Optional[int] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    # Newest first
    recent_discoveries: List[CompanyDiscovery] = Field(default_factory=list)
    activity_log: List[ActivityLogEntry] = Field(default_factory=list)

    # Transport
    is_connected: bool = False
    connection_error: Optional[str] = None

    # Last sync info (persisted)
    last_sync_time: Optional[datetime] = None
    last_sync_success: bool = False
    data_freshness: DataFreshness = DataFreshness.UNKNOWN

    @property
    def is_running(self) -> bool:
        return self.status.is_active
