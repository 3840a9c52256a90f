"""Event source transports for the pipeline stream.

A transport opens one connection, reports ``on_open`` once the response
is accepted, ``on_message`` for every SSE data payload and ``on_error``
exactly once when the connection ends for any reason other than
``close()``. Reconnecting is the stream client's job, never the
transport's.
"""

import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional

import requests

from pipeline_sync.logging import get_logger

from .sse import iter_sse_data

logger = get_logger(__name__, component="stream")

OpenCallback = Callable[[], None]
MessageCallback = Callable[[str], None]
ErrorCallback = Callable[[str], None]


class EventSource(ABC):
    """One connection to an SSE endpoint.

    Subclasses must call the callbacks given at construction and must stay
    silent after ``close()``.
    """

    def __init__(
        self,
        url: str,
        on_open: OpenCallback,
        on_message: MessageCallback,
        on_error: ErrorCallback,
    ) -> None:
        self.url = url
        self.on_open = on_open
        self.on_message = on_message
        self.on_error = on_error

    @abstractmethod
    def open(self) -> None:
        """Start connecting. Must not block on network I/O."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Stop the connection. Idempotent."""
        pass


class RequestsEventSource(EventSource):
    """Streams SSE frames with ``requests`` on a daemon reader thread.

    The read timeout bounds the gap between two lines, so a stream that
    stops sending heartbeats is reported as an error instead of hanging.
    """

    def __init__(
        self,
        url: str,
        on_open: OpenCallback,
        on_message: MessageCallback,
        on_error: ErrorCallback,
        session: Optional[requests.Session] = None,
        connect_timeout: float = 10.0,
        read_timeout: float = 60.0,
    ) -> None:
        super().__init__(url, on_open, on_message, on_error)
        self._session = session or requests.Session()
        self._timeout = (connect_timeout, read_timeout)
        self._closed = threading.Event()
        self._response: Optional[requests.Response] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def open(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run,
            name="pipeline-stream-reader",
            daemon=True,
        )
        self._thread.start()

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        response = self._response
        if response is not None:
            # Closing the response unblocks the reader thread
            response.close()

    def _run(self) -> None:
        try:
            response = self._session.get(
                self.url,
                stream=True,
                headers={
                    "Accept": "text/event-stream",
                    "Cache-Control": "no-cache",
                },
                timeout=self._timeout,
            )
        except requests.exceptions.RequestException as e:
            self._fail(f"Stream connection failed: {e}", type(e).__name__)
            return

        self._response = response
        if self._closed.is_set():
            response.close()
            return

        if response.status_code >= 400:
            response.close()
            self._fail(f"Stream returned HTTP {response.status_code}", "HTTPError")
            return

        logger.debug(
            "Stream response accepted",
            extra={"event": "stream.transport.open", "url": self.url, "status_code": response.status_code},
        )
        self.on_open()

        # Event streams are always UTF-8; requests assumes ISO-8859-1 for text/* without a charset
        response.encoding = "utf-8"
        try:
            for payload in iter_sse_data(response.iter_lines(decode_unicode=True)):
                if self._closed.is_set():
                    return
                self.on_message(payload)
        except requests.exceptions.RequestException as e:
            self._fail(f"Stream read failed: {e}", type(e).__name__)
            return
        except (AttributeError, ValueError) as e:
            # urllib3 raises these when the response is closed mid-read
            if self._closed.is_set():
                return
            self._fail(f"Stream read failed: {e}", type(e).__name__)
            return
        finally:
            response.close()

        self._fail("Stream closed by server", "EOF")

    def _fail(self, message: str, error_type: str) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        logger.debug(
            message,
            extra={"event": "stream.transport.error", "url": self.url, "error_type": error_type},
        )
        self.on_error(message)


def requests_source_factory(
    session: Optional[requests.Session] = None,
    connect_timeout: float = 10.0,
    read_timeout: float = 60.0,
) -> Callable[..., EventSource]:
    """Build a transport factory bound to a shared session and timeouts."""

    def factory(url, on_open, on_message, on_error) -> EventSource:
        return RequestsEventSource(
            url,
            on_open,
            on_message,
            on_error,
            session=session,
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
        )

    return factory
