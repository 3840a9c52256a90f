"""Client for the dashboard's pipeline sync endpoints.

Usage:
    from pipeline_sync.api import PipelineAPIClient
    client = PipelineAPIClient.from_config(app_config, auth_token=env_config.api_token)
    result = client.trigger_sync(force_refresh=True)

Exception handling:
    from pipeline_sync.api import APIError, APIHTTPError, APITimeoutError, APIResponseError
"""

from .client import PipelineAPIClient
from .exceptions import (
    APIConfigurationError,
    APIError,
    APIHTTPError,
    APIResponseError,
    APITimeoutError,
)
from .models import PipelineStatusSnapshot, SyncStatus, TriggerResult

__all__ = [
    "PipelineAPIClient",
    "PipelineStatusSnapshot",
    "SyncStatus",
    "TriggerResult",
    "APIError",
    "APIHTTPError",
    "APITimeoutError",
    "APIResponseError",
    "APIConfigurationError",
]
