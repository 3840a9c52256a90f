"""Configuration schema models using Pydantic."""

from enum import Enum
from typing import Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator, model_validator

from .duration import DurationParseError, parse_duration, validate_duration_range


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    KEY_VALUE = "key-value"


class ApiConfig(BaseModel):
    """Dashboard backend endpoints and HTTP settings."""

    base_url: str = Field(
        "http://localhost:3000", description="Base URL of the dashboard backend"
    )
    sync_path: str = Field(
        "/api/pipeline/sync", description="Trigger (POST) and status (GET) endpoint"
    )
    stream_path: str = Field(
        "/api/pipeline/sync/stream", description="Server-Sent Events endpoint"
    )
    http_request_timeout: int = Field(
        30, ge=5, le=300, description="Timeout for trigger and status requests (seconds)"
    )
    stream_read_timeout: int = Field(
        60,
        ge=5,
        le=600,
        description="Seconds without any stream data (heartbeats included) before the connection is considered lost",
    )
    user_agent: str = Field(
        "PipelineSync/1.0", min_length=1, description="User-Agent string for HTTP requests"
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Require an absolute http(s) URL and drop any trailing slash."""
        stripped = v.strip().rstrip("/")
        parsed = urlparse(stripped)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"base_url must be an absolute http(s) URL, got: '{v}'")
        return stripped

    @field_validator("sync_path", "stream_path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped.startswith("/"):
            raise ValueError(f"Endpoint path must start with '/', got: '{v}'")
        return stripped

    @field_validator("user_agent")
    @classmethod
    def strip_user_agent(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("user_agent cannot be empty")
        return stripped


class StreamConfig(BaseModel):
    """Reconnect policy for the live event stream."""

    max_reconnect_attempts: int = Field(
        5, ge=0, le=20, description="Reconnect attempts before giving up"
    )
    base_delay_ms: int = Field(
        1000, ge=100, le=60000, description="Delay before the first reconnect"
    )
    max_delay_ms: int = Field(
        30000, ge=100, le=300000, description="Upper bound for a single reconnect delay"
    )

    @model_validator(mode="after")
    def validate_delays(self):
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError(
                f"max_delay_ms ({self.max_delay_ms}) must be >= base_delay_ms ({self.base_delay_ms})"
            )
        return self


class SyncConfig(BaseModel):
    """Run gating, auto-sync and terminal-state timing."""

    auto_sync_enabled: bool = Field(True, description="Start a run when data is not fresh")
    auto_sync_interval: str = Field("60s", description="How often auto-sync checks freshness")
    fresh_skip_minutes: float = Field(
        5, ge=0, le=1440, description="Skip manual starts when the last sync is younger than this"
    )
    force_refresh: bool = Field(
        True, description="Ask the backend to ignore its own freshness window"
    )
    disconnect_delay_seconds: float = Field(
        0.1, ge=0, le=10, description="Delay before closing the stream after a terminal event"
    )
    reset_delay_seconds: float = Field(
        2.0, ge=0, le=60, description="Grace period before a finished run returns to idle"
    )

    # Computed field
    auto_sync_interval_seconds: Optional[int] = None

    @field_validator("auto_sync_interval")
    @classmethod
    def validate_auto_sync_interval(cls, v: str) -> str:
        try:
            validate_duration_range(parse_duration(v))
        except DurationParseError as e:
            raise ValueError(str(e)) from e
        return v

    @model_validator(mode="after")
    def compute_interval_seconds(self):
        self.auto_sync_interval_seconds = parse_duration(self.auto_sync_interval)
        return self


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: LogFormat = Field(
        LogFormat.KEY_VALUE, description="Log output format (json or key-value)"
    )

    model_config = {"use_enum_values": True}


class AppConfig(BaseModel):
    """Root configuration object for the pipeline sync client."""

    api: ApiConfig = Field(default_factory=ApiConfig, description="Backend endpoints")
    stream: StreamConfig = Field(default_factory=StreamConfig, description="Reconnect policy")
    sync: SyncConfig = Field(default_factory=SyncConfig, description="Run gating and auto-sync")
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    @property
    def sync_url(self) -> str:
        return f"{self.api.base_url}{self.api.sync_path}"

    @property
    def stream_url(self) -> str:
        return f"{self.api.base_url}{self.api.stream_path}"
