"""Wire events delivered by the pipeline stream.

Each SSE frame carries one JSON object tagged by ``type``. The union below
is validated with a pydantic discriminator, so an unknown ``type`` or a
badly typed field fails validation as a whole and the frame is dropped.
"""

import json
from typing import Annotated, Literal, Optional, Union

from pydantic import Field, TypeAdapter, ValidationError

from pipeline_sync.logging import get_logger

from .models import CamelModel, CompanyDiscovery, PipelineMetrics, PipelineStatus

logger = get_logger(__name__, component="stream")


class StreamEventBase(CamelModel):
    """Fields every stream event may carry."""

    timestamp: Optional[str] = None


class ConnectedEvent(StreamEventBase):
    type: Literal["connected"] = "connected"


class StatusEvent(StreamEventBase):
    type: Literal["status"] = "status"
    status: Optional[PipelineStatus] = None
    progress: Optional[int] = None
    message: Optional[str] = None
    stats: Optional[PipelineMetrics] = None


class EmailsFetchedEvent(StreamEventBase):
    type: Literal["emails_fetched"] = "emails_fetched"
    email_count: Optional[int] = Field(None, ge=0)
    progress: Optional[int] = None
    message: Optional[str] = None
    stats: Optional[PipelineMetrics] = None


class ProcessingEmailEvent(StreamEventBase):
    type: Literal["processing_email"] = "processing_email"
    current_email: Optional[int] = Field(None, ge=0)
    total_emails: Optional[int] = Field(None, ge=0)
    progress: Optional[int] = None
    message: Optional[str] = None
    stats: Optional[PipelineMetrics] = None


class CompanyDiscoveredEvent(StreamEventBase):
    type: Literal["company_discovered"] = "company_discovered"
    company: Optional[CompanyDiscovery] = None
    stats: Optional[PipelineMetrics] = None


class CompleteEvent(StreamEventBase):
    type: Literal["complete"] = "complete"
    message: Optional[str] = None
    stats: Optional[PipelineMetrics] = None


class ErrorEvent(StreamEventBase):
    type: Literal["error"] = "error"
    message: Optional[str] = None


class HeartbeatEvent(StreamEventBase):
    type: Literal["heartbeat"] = "heartbeat"


StreamEvent = Annotated[
    Union[
        ConnectedEvent,
        StatusEvent,
        EmailsFetchedEvent,
        ProcessingEmailEvent,
        CompanyDiscoveredEvent,
        CompleteEvent,
        ErrorEvent,
        HeartbeatEvent,
    ],
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter = TypeAdapter(StreamEvent)


def parse_event(payload: str) -> Optional[StreamEventBase]:
    """
    Parse one stream payload into a typed event.

    Args:
        payload: JSON text of a single SSE ``data`` frame

    Returns:
        The typed event, or None when the payload is malformed (logged and dropped)
    """
    try:
        raw = json.loads(payload)
    except (TypeError, ValueError) as e:
        logger.warning(
            "Dropping stream payload that is not valid JSON",
            extra={
                "event": "stream.payload.malformed",
                "error_type": type(e).__name__,
                "payload_preview": str(payload)[:200],
            },
        )
        return None

    try:
        return _EVENT_ADAPTER.validate_python(raw)
    except ValidationError as e:
        logger.warning(
            "Dropping stream payload that failed validation",
            extra={
                "event": "stream.payload.invalid",
                "event_type": raw.get("type") if isinstance(raw, dict) else None,
                "error_count": e.error_count(),
                "error": str(e.errors()[0]["msg"]) if e.error_count() else None,
            },
        )
        return None
