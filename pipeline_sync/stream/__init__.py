"""Live pipeline event stream: SSE transport, framing and reconnect policy."""

from .backoff import ReconnectPolicy
from .client import FAILED_MESSAGE, RECONNECTING_MESSAGE, StreamClient
from .sse import iter_sse_data
from .transport import EventSource, RequestsEventSource, requests_source_factory

__all__ = [
    "StreamClient",
    "ReconnectPolicy",
    "EventSource",
    "RequestsEventSource",
    "requests_source_factory",
    "iter_sse_data",
    "RECONNECTING_MESSAGE",
    "FAILED_MESSAGE",
]
