"""Response payloads of the pipeline sync endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator

from pipeline_sync.domain.models import CamelModel, PipelineMetrics
from pipeline_sync.utils.timestamps import ensure_utc


class PipelineStatusSnapshot(CamelModel):
    """Backend view of the pipeline, as returned by both sync endpoints."""

    status: str = "idle"
    progress: int = 0
    message: str = ""
    last_sync: Optional[datetime] = None
    stats: Optional[PipelineMetrics] = None
    data_is_fresh: bool = False
    next_sync_in: Optional[int] = Field(None, description="Milliseconds until the backend considers data stale")

    @field_validator("last_sync")
    @classmethod
    def last_sync_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @field_validator("message", mode="before")
    @classmethod
    def default_message(cls, v):
        return "" if v is None else v

    @field_validator("data_is_fresh", mode="before")
    @classmethod
    def coerce_fresh_flag(cls, v):
        # The backend computes this as `lastSync && ...`, which yields null without a sync
        return bool(v)


class TriggerResult(CamelModel):
    """Outcome of ``POST /api/pipeline/sync``."""

    success: bool
    skipped: bool = False
    message: Optional[str] = None
    data: PipelineStatusSnapshot = Field(default_factory=PipelineStatusSnapshot)


class SyncStatus(CamelModel):
    """Outcome of ``GET /api/pipeline/sync``."""

    success: bool
    data: PipelineStatusSnapshot = Field(default_factory=PipelineStatusSnapshot)
