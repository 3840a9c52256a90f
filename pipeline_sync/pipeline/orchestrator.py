"""Orchestration of pipeline runs for one client session."""

import logging
import threading
from datetime import datetime
from typing import Any, Callable, List, Optional
from uuid import uuid4

from pipeline_sync.api.exceptions import APIError
from pipeline_sync.config.models import SyncConfig
from pipeline_sync.domain.models import DataFreshness, PipelineState, Severity
from pipeline_sync.logging import get_logger
from pipeline_sync.logging.context import log_context
from pipeline_sync.utils.timestamps import utc_now

from .actions import (
    ActivityLogCleared,
    ActivityNoted,
    ConnectionChanged,
    FreshnessChecked,
    PipelineStopped,
    ResetToIdle,
    RunStarted,
    SyncSkipped,
    TriggerAccepted,
    TriggerFailed,
)
from .freshness import compute_freshness, is_recent
from .models import Notice, ScheduleTerminalReset
from .reducer import reduce

logger = get_logger(__name__, component="pipeline")

Listener = Callable[[PipelineState], None]
StreamFactory = Callable[..., Any]


def log_notice(notice: Notice) -> None:
    """Default notifier: notices end up in the log."""
    logger.log(
        logging.WARNING if notice.variant == "destructive" else logging.INFO,
        f"{notice.title}: {notice.description}" if notice.description else notice.title,
        extra={"event": "pipeline.notice", "title": notice.title, "variant": notice.variant},
    )


class SyncOrchestrator:
    """
    Owns the session's PipelineState and coordinates runs.

    Every change goes through ``dispatch``, which reduces events one at a
    time under a lock. Effects and subscriber callbacks run after the lock
    is released, so a subscriber may dispatch again without deadlocking.
    """

    def __init__(
        self,
        api_client,
        stream_factory: StreamFactory,
        timers,
        sync_config: Optional[SyncConfig] = None,
        persistence=None,
        notifier: Callable[[Notice], None] = log_notice,
        clock: Callable[[], datetime] = utc_now,
        initial_state: Optional[PipelineState] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            api_client: PipelineAPIClient (``trigger_sync``, ``get_sync_status``)
            stream_factory: ``factory(on_event, on_connection_change) -> StreamClient``
            timers: Object with ``call_later(delay_seconds, fn)`` returning a cancellable handle
            sync_config: Run gating and terminal-state timing
            persistence: Optional PersistenceAdapter for the cross-session snapshot
            notifier: Receives user-facing notices
            clock: Returns the current UTC time
            initial_state: Starting state (defaults to idle)
        """
        self.api_client = api_client
        self.timers = timers
        self.sync_config = sync_config or SyncConfig()
        self.persistence = persistence
        self._notifier = notifier
        self._clock = clock

        self._state = initial_state or PipelineState()
        self._listeners: List[Listener] = []
        self._dispatch_lock = threading.Lock()
        self._persist_lock = threading.Lock()
        self._last_persisted = None

        # Single-slot in-flight tokens
        self._start_token = threading.Lock()
        self._freshness_token = threading.Lock()

        self._reset_lock = threading.Lock()
        self._disconnect_handle = None
        self._reset_handle = None
        self._run_generation = 0

        self._auto_sync_enabled = self.sync_config.auto_sync_enabled

        self.stream = stream_factory(self._on_stream_event, self._on_connection_change)

    # State access

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def auto_sync_enabled(self) -> bool:
        return self._auto_sync_enabled

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener called with every new state.

        Returns:
            Function that removes the listener
        """
        with self._dispatch_lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._dispatch_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, event) -> PipelineState:
        """Reduce one event and run its effects.

        Returns:
            The state right after this event
        """
        with self._dispatch_lock:
            previous = self._state
            result = reduce(previous, event, self._clock())
            self._state = result.state
            listeners = list(self._listeners)

        if result.state is not previous:
            self._persist()
            self._notify_listeners(listeners, result.state)

        for effect in result.effects:
            self._run_effect(effect)

        return result.state

    # Operations

    def start_pipeline(self) -> bool:
        """
        Start a pipeline run unless one is in flight or the data is fresh.

        Returns:
            True when the backend accepted the trigger, False otherwise
        """
        if not self._start_token.acquire(blocking=False):
            logger.info(
                "Pipeline start ignored: a start is already in progress",
                extra={"event": "pipeline.start.skipped", "reason": "start_in_flight"},
            )
            self._notify(
                Notice(
                    title="Pipeline Start In Progress",
                    description="A pipeline start request is already being processed.",
                )
            )
            return False

        try:
            state = self._state
            if state.is_running:
                logger.info(
                    f"Pipeline already running with status: {state.status.value}",
                    extra={"event": "pipeline.start.skipped", "reason": "already_running"},
                )
                self._notify(
                    Notice(
                        title="Pipeline Already Running",
                        description="The intelligence pipeline is already syncing data.",
                    )
                )
                return False

            if is_recent(state.last_sync_time, self._clock(), self.sync_config.fresh_skip_minutes):
                logger.info(
                    "Pipeline start skipped: data is fresh",
                    extra={
                        "event": "pipeline.start.skipped",
                        "reason": "data_fresh",
                        "fresh_skip_minutes": self.sync_config.fresh_skip_minutes,
                    },
                )
                self._notify(
                    Notice(
                        title="Data is Fresh",
                        description=(
                            "Intelligence data was updated less than "
                            f"{self.sync_config.fresh_skip_minutes:g} minutes ago."
                        ),
                    )
                )
                return False

            with log_context(run_id=uuid4().hex):
                return self._run(state)
        finally:
            self._start_token.release()

    def _run(self, state: PipelineState) -> bool:
        previous_metrics = state.metrics

        self._cancel_terminal_reset()
        self.dispatch(RunStarted())
        logger.info(
            "Pipeline run started",
            extra={"event": "pipeline.run.started", "force_refresh": self.sync_config.force_refresh},
        )

        self.stream.connect()

        try:
            result = self.api_client.trigger_sync(force_refresh=self.sync_config.force_refresh)
        except APIError as e:
            logger.error(
                f"Pipeline trigger failed: {e}",
                extra={
                    "event": "pipeline.trigger.failed",
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )
            self.dispatch(TriggerFailed(message=str(e), previous_metrics=previous_metrics))
            self.stream.disconnect()
            return False
        except Exception as e:
            logger.error(
                f"Unexpected error triggering pipeline: {e}",
                extra={"event": "pipeline.trigger.failed", "error_type": type(e).__name__},
                exc_info=True,
            )
            self.dispatch(
                TriggerFailed(message="Failed to start pipeline", previous_metrics=previous_metrics)
            )
            self.stream.disconnect()
            return False

        if result.skipped:
            logger.info(
                "Backend skipped the sync: data is still fresh",
                extra={"event": "pipeline.run.skipped", "reason": "backend_fresh"},
            )
            self.dispatch(
                SyncSkipped(
                    last_sync=result.data.last_sync,
                    stats=result.data.stats,
                    previous_metrics=previous_metrics,
                )
            )
            self.stream.disconnect()
            return False

        self.dispatch(TriggerAccepted())
        return True

    def stop_pipeline(self) -> None:
        """Disconnect the stream and return to idle. The backend run is not cancelled."""
        self._cancel_terminal_reset()
        self.stream.disconnect()
        self.dispatch(PipelineStopped())
        logger.info("Pipeline stopped", extra={"event": "pipeline.run.stopped"})

    def check_data_freshness(self) -> bool:
        """
        Refresh last-sync metadata from the backend.

        Returns:
            True when the check completed, False when skipped or failed
        """
        if not self._freshness_token.acquire(blocking=False):
            logger.debug(
                "Freshness check already in progress",
                extra={"event": "pipeline.freshness.skipped"},
            )
            return False

        try:
            try:
                status = self.api_client.get_sync_status()
            except APIError as e:
                logger.warning(
                    f"Failed to check data freshness: {e}",
                    extra={
                        "event": "pipeline.freshness.failed",
                        "error_type": type(e).__name__,
                        "error": str(e),
                    },
                )
                return False

            state = self.dispatch(
                FreshnessChecked(last_sync=status.data.last_sync, stats=status.data.stats)
            )
            logger.debug(
                f"Data freshness: {state.data_freshness.value}",
                extra={
                    "event": "pipeline.freshness.checked",
                    "data_freshness": state.data_freshness.value,
                },
            )
            return True
        finally:
            self._freshness_token.release()

    def auto_sync_tick(self) -> bool:
        """
        Periodic job: check freshness and start a run when data is not fresh.

        Returns:
            True when a run was started
        """
        if not self._auto_sync_enabled:
            return False

        try:
            if not self.check_data_freshness():
                # Recompute locally so freshness still ages without the backend
                self.dispatch(FreshnessChecked())

            state = self._state
            freshness = compute_freshness(state.last_sync_time, self._clock())
            if freshness == DataFreshness.FRESH or state.is_running:
                return False

            logger.info(
                f"Auto-sync starting pipeline, data is {freshness.value}",
                extra={"event": "pipeline.auto_sync.triggered", "data_freshness": freshness.value},
            )
            return self.start_pipeline()
        except Exception as e:
            logger.error(
                f"Auto-sync tick failed: {e}",
                extra={"event": "pipeline.auto_sync.failed", "error_type": type(e).__name__},
                exc_info=True,
            )
            return False

    def set_auto_sync_enabled(self, enabled: bool) -> None:
        if enabled == self._auto_sync_enabled:
            return
        self._auto_sync_enabled = enabled
        self.dispatch(ActivityNoted(f"Auto-sync {'enabled' if enabled else 'disabled'}", Severity.INFO))
        logger.info(
            f"Auto-sync {'enabled' if enabled else 'disabled'}",
            extra={"event": "pipeline.auto_sync.toggled", "enabled": enabled},
        )

    def clear_activity_log(self) -> None:
        self.dispatch(ActivityLogCleared())

    def restore(self) -> bool:
        """
        Rehydrate persisted fields (last sync, metrics, discoveries).

        Returns:
            True when a snapshot was found and applied
        """
        if self.persistence is None:
            return False

        snapshot = self.persistence.load()
        if snapshot is None:
            return False

        with self._dispatch_lock:
            self._state = self.persistence.apply(self._state, snapshot)
            state = self._state
            listeners = list(self._listeners)

        with self._persist_lock:
            self._last_persisted = self.persistence.snapshot(state)

        logger.info(
            "Restored persisted pipeline state",
            extra={
                "event": "pipeline.state.restored",
                "last_sync_time": state.last_sync_time.isoformat() if state.last_sync_time else None,
                "discovery_count": len(state.recent_discoveries),
            },
        )
        self._notify_listeners(listeners, state)
        return True

    def close(self) -> None:
        """Disconnect the stream and cancel pending timers."""
        self._cancel_terminal_reset()
        self.stream.disconnect()
        logger.debug("Orchestrator closed", extra={"event": "pipeline.closed"})

    # Stream callbacks

    def _on_stream_event(self, event) -> None:
        self.dispatch(event)

    def _on_connection_change(
        self,
        is_connected: bool,
        error: Optional[str] = None,
        keep_error: bool = False,
        fatal: bool = False,
    ) -> None:
        if fatal and self._state.is_running:
            logger.error(
                f"Pipeline run abandoned: {error}",
                extra={"event": "pipeline.run.stream_lost", "error": error},
            )
        self.dispatch(
            ConnectionChanged(
                is_connected=is_connected, error=error, keep_error=keep_error, fatal=fatal
            )
        )

    # Effects

    def _run_effect(self, effect) -> None:
        if isinstance(effect, Notice):
            self._notify(effect)
        elif isinstance(effect, ScheduleTerminalReset):
            self._schedule_terminal_reset()

    def _notify(self, notice: Notice) -> None:
        try:
            self._notifier(notice)
        except Exception as e:
            logger.error(
                f"Notifier failed: {e}",
                extra={"event": "pipeline.notice.failed", "title": notice.title},
                exc_info=True,
            )

    def _notify_listeners(self, listeners: List[Listener], state: PipelineState) -> None:
        for listener in listeners:
            try:
                listener(state)
            except Exception as e:
                logger.error(
                    f"State listener failed: {e}",
                    extra={"event": "pipeline.listener.failed"},
                    exc_info=True,
                )

    def _schedule_terminal_reset(self) -> None:
        with self._reset_lock:
            self._cancel_handles()
            generation = self._run_generation
            self._disconnect_handle = self.timers.call_later(
                self.sync_config.disconnect_delay_seconds,
                lambda: self._terminal_disconnect(generation),
            )

    def _terminal_disconnect(self, generation: int) -> None:
        with self._reset_lock:
            if generation != self._run_generation:
                return
            self._disconnect_handle = None

        self.stream.disconnect()

        with self._reset_lock:
            if generation != self._run_generation:
                return
            self._reset_handle = self.timers.call_later(
                self.sync_config.reset_delay_seconds,
                lambda: self._terminal_reset(generation),
            )

    def _terminal_reset(self, generation: int) -> None:
        with self._reset_lock:
            if generation != self._run_generation:
                return
            self._reset_handle = None
        self.dispatch(ResetToIdle())

    def _cancel_terminal_reset(self) -> None:
        with self._reset_lock:
            # Invalidates timers that already started firing
            self._run_generation += 1
            self._cancel_handles()

    def _cancel_handles(self) -> None:
        for handle in (self._disconnect_handle, self._reset_handle):
            if handle is not None:
                handle.cancel()
        self._disconnect_handle = None
        self._reset_handle = None

    # Persistence

    def _persist(self) -> None:
        if self.persistence is None:
            return
        with self._persist_lock:
            snapshot = self.persistence.snapshot(self._state)
            if snapshot == self._last_persisted:
                return
            if self.persistence.save(snapshot):
                self._last_persisted = snapshot
