"""Custom exceptions for the dashboard API client."""

from typing import Optional


class APIError(Exception):
    """Base exception for all API client errors.

    The orchestrator catches this at its boundary and turns it into an
    ``error`` state; nothing below it needs to care which subclass fired.
    """

    pass


class APIHTTPError(APIError):
    """Request failed at the HTTP level.

    Covers 4xx/5xx responses (``status_code`` set) and connection failures
    (``status_code`` 0). A 429 from the trigger endpoint means the backend
    already holds its sync lock.
    """

    def __init__(self, message: str, status_code: int, url: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.url = url

    @property
    def is_retryable(self) -> bool:
        return self.status_code == 0 or self.status_code == 429 or self.status_code >= 500


class APITimeoutError(APIError):
    """Request did not complete within the configured timeout."""

    def __init__(self, message: str, url: str) -> None:
        super().__init__(message)
        self.url = url


class APIResponseError(APIError):
    """Response arrived but could not be parsed, or reported ``success: false``."""

    def __init__(self, message: str, payload: Optional[dict] = None) -> None:
        super().__init__(message)
        self.payload = payload


class APIConfigurationError(APIError):
    """Client was given invalid settings (timeout range, empty user agent, bad URL)."""

    pass
