"""HTTP client for the dashboard's pipeline endpoints.

Wraps a ``requests.Session`` with the shared User-Agent, optional bearer
token and timeout, and maps transport and payload failures onto the
``APIError`` hierarchy.
"""

import logging
from typing import Any, Dict, Optional

import requests
from pydantic import ValidationError

from pipeline_sync.config.models import AppConfig
from pipeline_sync.logging import get_logger

from .exceptions import (
    APIConfigurationError,
    APIHTTPError,
    APIResponseError,
    APITimeoutError,
)
from .models import SyncStatus, TriggerResult

logger = get_logger(__name__, component="api")


class PipelineAPIClient:
    """Client for ``/api/pipeline/sync`` (trigger and status).

    Attributes:
        base_url: Dashboard base URL without trailing slash
        timeout: HTTP request timeout in seconds
        user_agent: User-Agent header for every request
    """

    def __init__(
        self,
        base_url: str,
        timeout: int = 30,
        user_agent: str = "PipelineSync/1.0",
        auth_token: Optional[str] = None,
        sync_path: str = "/api/pipeline/sync",
        stream_path: str = "/api/pipeline/sync/stream",
        session: Optional[requests.Session] = None,
    ) -> None:
        """Initialize the client.

        Raises:
            APIConfigurationError: If timeout is outside 5-300 s, user_agent is empty
                or base_url is not an http(s) URL
        """
        if not 5 <= timeout <= 300:
            raise APIConfigurationError(
                f"Timeout must be between 5 and 300 seconds, got: {timeout}"
            )
        if not user_agent or not user_agent.strip():
            raise APIConfigurationError("user_agent cannot be empty")
        if not base_url or not base_url.startswith(("http://", "https://")):
            raise APIConfigurationError(f"base_url must be an http(s) URL, got: {base_url!r}")

        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.user_agent = user_agent.strip()
        self.sync_path = sync_path
        self.stream_path = stream_path

        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": self.user_agent})
        if auth_token:
            self._session.headers.update({"Authorization": f"Bearer {auth_token}"})

    @classmethod
    def from_config(cls, app_config: AppConfig, auth_token: Optional[str] = None) -> "PipelineAPIClient":
        return cls(
            base_url=app_config.api.base_url,
            timeout=app_config.api.http_request_timeout,
            user_agent=app_config.api.user_agent,
            auth_token=auth_token,
            sync_path=app_config.api.sync_path,
            stream_path=app_config.api.stream_path,
        )

    @property
    def session(self) -> requests.Session:
        """Shared session, reused by the stream transport for headers and auth."""
        return self._session

    @property
    def sync_url(self) -> str:
        return f"{self.base_url}{self.sync_path}"

    @property
    def stream_url(self) -> str:
        return f"{self.base_url}{self.stream_path}"

    def trigger_sync(self, force_refresh: bool = True) -> TriggerResult:
        """Start a pipeline run on the backend.

        Args:
            force_refresh: Ask the backend to run even inside its freshness window

        Returns:
            TriggerResult; ``skipped`` is True when the backend declined to run

        Raises:
            APIHTTPError: On 4xx/5xx (429 when the backend sync lock is held)
            APITimeoutError: On request timeout
            APIResponseError: On unparseable payloads or ``success: false``
        """
        data = self._make_request(
            self.sync_url,
            method="POST",
            json_data={"forceRefresh": force_refresh},
        )
        result = self._validate(TriggerResult, data)

        logger.info(
            "Pipeline trigger accepted" if not result.skipped else "Pipeline trigger skipped by backend",
            extra={
                "event": "api.trigger.skipped" if result.skipped else "api.trigger.accepted",
                "force_refresh": force_refresh,
                "backend_status": result.data.status,
            },
        )
        return result

    def get_sync_status(self) -> SyncStatus:
        """Fetch last-sync metadata.

        Raises:
            APIHTTPError, APITimeoutError, APIResponseError: As for trigger_sync
        """
        data = self._make_request(
            self.sync_url,
            method="GET",
            headers={"Cache-Control": "no-cache"},
        )
        return self._validate(SyncStatus, data)

    def close(self) -> None:
        self._session.close()

    def _validate(self, model, data: Any):
        if not isinstance(data, dict):
            raise APIResponseError(
                f"Expected a JSON object from {self.sync_url}, got {type(data).__name__}"
            )
        if not data.get("success", False):
            raise APIResponseError(
                data.get("error") or data.get("message") or "Backend reported failure",
                payload=data,
            )
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise APIResponseError(
                f"Unexpected response shape from {self.sync_url}: {e.errors()[0]['msg']}",
                payload=data,
            ) from e

    def _make_request(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        json_data: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Make HTTP request with error handling.

        Returns:
            Parsed JSON response

        Raises:
            APIHTTPError: On 4xx or 5xx HTTP status, or connection failure
            APITimeoutError: On request timeout
            APIResponseError: On invalid JSON
        """
        try:
            logger.debug(
                f"HTTP {method} request to {url}",
                extra={
                    "event": "api.request",
                    "method": method,
                    "url": url,
                    "timeout": self.timeout,
                },
            )

            response = self._session.request(
                method=method,
                url=url,
                headers=headers,
                json=json_data,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            logger.warning(
                f"Request to {url} timed out after {self.timeout} seconds",
                extra={
                    "event": "api.request.timeout",
                    "error_type": "Timeout",
                    "url": url,
                    "timeout": self.timeout,
                },
            )
            raise APITimeoutError(
                f"Request to {url} timed out after {self.timeout} seconds",
                url=url,
            ) from e
        except requests.exceptions.RequestException as e:
            logger.error(
                f"Request to {url} failed: {e}",
                extra={
                    "event": "api.request.error",
                    "error_type": type(e).__name__,
                    "url": url,
                },
            )
            raise APIHTTPError(f"Request to {url} failed: {e}", status_code=0, url=url) from e

        if response.status_code >= 400:
            is_retryable = response.status_code >= 500 or response.status_code == 429
            logger.log(
                logging.WARNING if is_retryable else logging.ERROR,
                f"HTTP {response.status_code} error from {url}",
                extra={
                    "event": "api.request.retryable_error" if is_retryable else "api.request.error",
                    "status_code": response.status_code,
                    "url": url,
                },
            )
            raise APIHTTPError(
                self._error_message(response),
                status_code=response.status_code,
                url=url,
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error(
                f"Failed to parse JSON response from {url}",
                extra={
                    "event": "api.request.error",
                    "error_type": "JSONDecodeError",
                    "url": url,
                },
            )
            raise APIResponseError(f"Failed to parse JSON response from {url}: {e}") from e

        logger.debug(
            "HTTP request succeeded",
            extra={"event": "api.request.succeeded", "status_code": response.status_code, "url": url},
        )
        return data

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        """Prefer the backend's own ``error`` field over the bare status line."""
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            detail = body.get("error") or body.get("message")
            if detail:
                return str(detail)
        return f"HTTP {response.status_code}: {response.reason}"
