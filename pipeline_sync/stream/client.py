"""Reconnecting client for the pipeline event stream."""

import threading
from functools import partial
from typing import Any, Callable, Optional

from pipeline_sync.domain.events import HeartbeatEvent, StreamEventBase, parse_event
from pipeline_sync.logging import get_logger

from .backoff import ReconnectPolicy
from .transport import EventSource, requests_source_factory

logger = get_logger(__name__, component="stream")

RECONNECTING_MESSAGE = "Connection lost. Reconnecting..."
FAILED_MESSAGE = "Failed to connect to pipeline stream"

EventCallback = Callable[[StreamEventBase], None]
ConnectionCallback = Callable[..., None]
SourceFactory = Callable[..., EventSource]


class StreamClient:
    """
    Keeps one live connection to the pipeline stream and reconnects with backoff.

    Every connection gets a generation number; callbacks carrying an older
    generation come from a superseded or closed source and are ignored.

    Connection changes are reported as
    ``on_connection_change(is_connected, error=None, keep_error=False, fatal=False)``.
    ``keep_error`` is set by ``disconnect()`` so a deliberate close leaves any
    previously reported error in place; ``fatal`` marks the final failure
    after the reconnect attempts are exhausted.
    """

    def __init__(
        self,
        url: str,
        on_event: EventCallback,
        on_connection_change: ConnectionCallback,
        timers: Any,
        policy: Optional[ReconnectPolicy] = None,
        source_factory: Optional[SourceFactory] = None,
    ) -> None:
        """
        Initialize the stream client.

        Args:
            url: Absolute URL of the SSE endpoint
            on_event: Receives every parsed non-heartbeat event
            on_connection_change: Receives transport state changes
            timers: Object with ``call_later(delay_seconds, fn)`` returning a cancellable handle
            policy: Reconnect policy (defaults to 5 attempts, 1 s base, 30 s cap)
            source_factory: ``factory(url, on_open, on_message, on_error) -> EventSource``
        """
        self.url = url
        self._on_event = on_event
        self._on_connection_change = on_connection_change
        self._timers = timers
        self.policy = policy or ReconnectPolicy()
        self._source_factory = source_factory or requests_source_factory()

        self._lock = threading.RLock()
        self._generation = 0
        self._source: Optional[EventSource] = None
        self._reconnect_handle = None
        self._wanted = False

    @property
    def is_active(self) -> bool:
        """True while the client wants a connection (open or reconnecting)."""
        return self._wanted

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    def connect(self) -> None:
        """Open a fresh connection, replacing any existing one."""
        with self._lock:
            self._cancel_reconnect()
            self._close_source()
            self._wanted = True
            self.policy.reset()
            source = self._new_source()

        logger.info(
            "Connecting to pipeline stream",
            extra={"event": "stream.connecting", "url": self.url},
        )
        self._on_connection_change(False, None)
        source.open()

    def disconnect(self) -> None:
        """Close the connection and cancel any pending reconnect."""
        with self._lock:
            was_wanted = self._wanted
            self._wanted = False
            self._cancel_reconnect()
            self._close_source()
            # Invalidate callbacks still in flight from the closed source
            self._generation += 1

        if was_wanted:
            logger.info("Disconnected from pipeline stream", extra={"event": "stream.disconnected"})
        self._on_connection_change(False, None, keep_error=True)

    def _new_source(self) -> EventSource:
        self._generation += 1
        generation = self._generation
        self._source = self._source_factory(
            self.url,
            partial(self._handle_open, generation),
            partial(self._handle_message, generation),
            partial(self._handle_error, generation),
        )
        return self._source

    def _close_source(self) -> None:
        source, self._source = self._source, None
        if source is not None:
            source.close()

    def _cancel_reconnect(self) -> None:
        handle, self._reconnect_handle = self._reconnect_handle, None
        if handle is not None:
            handle.cancel()

    def _is_current(self, generation: int) -> bool:
        return self._wanted and generation == self._generation

    def _handle_open(self, generation: int) -> None:
        with self._lock:
            if not self._is_current(generation):
                return
            self.policy.reset()

        logger.info(
            "Connected to pipeline stream",
            extra={"event": "stream.connected", "url": self.url},
        )
        self._on_connection_change(True, None)

    def _handle_message(self, generation: int, payload: str) -> None:
        if not self._is_current(generation):
            return

        event = parse_event(payload)
        if event is None:
            return
        if isinstance(event, HeartbeatEvent):
            logger.debug("Stream heartbeat", extra={"event": "stream.heartbeat"})
            return

        self._on_event(event)

    def _handle_error(self, generation: int, message: str) -> None:
        with self._lock:
            if not self._is_current(generation):
                return
            self._close_source()
            # The failed source must not report again
            self._generation += 1
            attempt = self.policy.attempt
            delay_ms = self.policy.schedule()
            if delay_ms is not None:
                self._reconnect_handle = self._timers.call_later(
                    delay_ms / 1000.0, partial(self._reconnect, self._generation)
                )
            else:
                self._wanted = False

        if delay_ms is not None:
            logger.warning(
                f"Stream connection lost, reconnecting in {delay_ms} ms",
                extra={
                    "event": "stream.reconnect.scheduled",
                    "attempt": attempt + 1,
                    "max_attempts": self.policy.max_attempts,
                    "delay_ms": delay_ms,
                    "error": message,
                },
            )
            self._on_connection_change(False, RECONNECTING_MESSAGE)
        else:
            logger.error(
                "Stream reconnect attempts exhausted",
                extra={
                    "event": "stream.reconnect.exhausted",
                    "max_attempts": self.policy.max_attempts,
                    "error": message,
                },
            )
            self._on_connection_change(False, FAILED_MESSAGE, fatal=True)

    def _reconnect(self, generation: int) -> None:
        with self._lock:
            if not self._is_current(generation):
                return
            self._reconnect_handle = None
            source = self._new_source()

        logger.info(
            "Reconnecting to pipeline stream",
            extra={"event": "stream.reconnecting", "attempt": self.policy.attempt},
        )
        source.open()
