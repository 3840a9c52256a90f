"""Tests for the sync orchestrator.

The orchestrator is wired to a real StreamClient over FakeEventSource, a
mocked API client and FakeTimers sharing one FakeClock, so full runs
(trigger, live events, terminal auto-reset) play out deterministically.
"""

import threading
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from pipeline_sync.api.exceptions import APIHTTPError, APITimeoutError
from pipeline_sync.api.models import PipelineStatusSnapshot, SyncStatus, TriggerResult
from pipeline_sync.config.models import SyncConfig
from pipeline_sync.domain.models import (
    CompanyDiscovery,
    DataFreshness,
    PipelineMetrics,
    PipelineState,
    PipelineStatus,
)
from pipeline_sync.persistence import PersistenceAdapter, close_database, init_database
from pipeline_sync.pipeline.actions import ActivityNoted
from pipeline_sync.pipeline.orchestrator import SyncOrchestrator
from pipeline_sync.stream.client import StreamClient
from tests.helpers import FakeClock, FakeSourceFactory, FakeTimers

URL = "http://localhost:3000/api/pipeline/sync/stream"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timers(clock):
    return FakeTimers(clock)


@pytest.fixture
def sources():
    return FakeSourceFactory()


@pytest.fixture
def api():
    client = MagicMock()
    client.trigger_sync.return_value = TriggerResult(
        success=True, data=PipelineStatusSnapshot(status="running")
    )
    client.get_sync_status.return_value = SyncStatus(success=True)
    return client


@pytest.fixture
def notices():
    return []


@pytest.fixture
def persistence():
    """PersistenceAdapter on a fresh in-memory database."""
    init_database("sqlite:///:memory:")
    yield PersistenceAdapter()
    close_database()


@pytest.fixture
def make_orchestrator(api, timers, clock, sources, notices):
    def factory(**kwargs):
        def stream_factory(on_event, on_connection_change):
            return StreamClient(
                URL,
                on_event=on_event,
                on_connection_change=on_connection_change,
                timers=timers,
                source_factory=sources,
            )

        kwargs.setdefault("sync_config", SyncConfig())
        return SyncOrchestrator(
            api_client=api,
            stream_factory=stream_factory,
            timers=timers,
            notifier=notices.append,
            clock=clock,
            **kwargs,
        )

    return factory


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()


def titles(notices):
    return [n.title for n in notices]


class TestStartPipeline:
    """Starting a run and the gates in front of it."""

    def test_start_success(self, orchestrator, api, sources):
        """Test that a start clears the run, opens the stream and triggers the backend."""
        assert orchestrator.start_pipeline() is True

        state = orchestrator.state
        assert state.status == PipelineStatus.CONNECTING
        assert state.progress == 0
        assert state.message == "Starting pipeline..."
        assert state.activity_log[0].message == "Pipeline started"
        assert sources.latest.opened is True
        api.trigger_sync.assert_called_once_with(force_refresh=True)

    def test_stream_opened_before_trigger(self, orchestrator, api, sources):
        """Test that the stream is connecting by the time the trigger is sent."""
        seen = []
        api.trigger_sync.side_effect = lambda force_refresh: (
            seen.append(len(sources.sources)) or TriggerResult(success=True)
        )

        orchestrator.start_pipeline()

        assert seen == [1]

    def test_force_refresh_from_config(self, make_orchestrator, api):
        """Test that force_refresh follows the sync config."""
        orchestrator = make_orchestrator(sync_config=SyncConfig(force_refresh=False))
        orchestrator.start_pipeline()
        api.trigger_sync.assert_called_once_with(force_refresh=False)

    def test_already_running(self, orchestrator, api, notices):
        """Test that a second start during a run is refused."""
        orchestrator.start_pipeline()
        assert orchestrator.start_pipeline() is False

        assert api.trigger_sync.call_count == 1
        assert titles(notices) == ["Pipeline Already Running"]

    def test_data_fresh_skips_start(self, make_orchestrator, api, clock, sources, notices):
        """Test that a sync younger than five minutes blocks a start."""
        orchestrator = make_orchestrator(
            initial_state=PipelineState(last_sync_time=clock() - timedelta(minutes=2))
        )

        assert orchestrator.start_pipeline() is False

        api.trigger_sync.assert_not_called()
        assert sources.sources == []
        assert orchestrator.state.status == PipelineStatus.IDLE
        assert titles(notices) == ["Data is Fresh"]
        assert "5 minutes" in notices[0].description

    def test_start_allowed_after_fresh_window(self, make_orchestrator, clock):
        """Test that a sync older than the window does not block."""
        orchestrator = make_orchestrator(
            initial_state=PipelineState(last_sync_time=clock() - timedelta(minutes=6))
        )
        assert orchestrator.start_pipeline() is True

    def test_concurrent_start_rejected(self, orchestrator, api, sources, notices):
        """Test that a start while another start is in flight is refused."""
        entered = threading.Event()
        release = threading.Event()

        def slow_trigger(force_refresh):
            entered.set()
            release.wait(5)
            return TriggerResult(success=True)

        api.trigger_sync.side_effect = slow_trigger
        worker = threading.Thread(target=orchestrator.start_pipeline)
        worker.start()
        try:
            assert entered.wait(5)
            assert orchestrator.start_pipeline() is False
        finally:
            release.set()
            worker.join(5)

        assert api.trigger_sync.call_count == 1
        assert titles(notices) == ["Pipeline Start In Progress"]
        assert len(sources.sources) == 1
        assert orchestrator.state.activity_log[0].message == "Pipeline started"


class TestTriggerOutcomes:
    """Failure and skip responses from the trigger endpoint."""

    def test_trigger_http_error(self, make_orchestrator, api, sources, notices, timers):
        """Test that a rejected trigger ends in error and restores metrics."""
        previous = PipelineMetrics(emails_fetched=30, companies_extracted=12)
        orchestrator = make_orchestrator(initial_state=PipelineState(metrics=previous))
        api.trigger_sync.side_effect = APIHTTPError("Sync already in progress", 429, URL)

        assert orchestrator.start_pipeline() is False

        state = orchestrator.state
        assert state.status == PipelineStatus.ERROR
        assert state.connection_error == "Sync already in progress"
        assert state.metrics == previous
        assert state.last_sync_success is False
        assert sources.latest.closed is True
        assert titles(notices) == ["Pipeline Error"]
        assert notices[0].variant == "destructive"

        timers.advance(5)
        assert orchestrator.state.status == PipelineStatus.IDLE

    def test_trigger_timeout(self, orchestrator, api):
        """Test that a timeout surfaces its message."""
        api.trigger_sync.side_effect = APITimeoutError("Request timed out after 30 seconds", URL)

        orchestrator.start_pipeline()

        assert orchestrator.state.connection_error == "Request timed out after 30 seconds"

    def test_trigger_unexpected_exception(self, orchestrator, api):
        """Test that an unexpected error uses the generic message."""
        api.trigger_sync.side_effect = RuntimeError("boom")

        assert orchestrator.start_pipeline() is False

        assert orchestrator.state.status == PipelineStatus.ERROR
        assert orchestrator.state.connection_error == "Failed to start pipeline"

    def test_backend_skipped_sync(self, make_orchestrator, api, clock, sources, notices, timers):
        """Test that a backend skip returns to idle with fresh data."""
        last_sync = clock() - timedelta(minutes=10)
        stats = PipelineMetrics(emails_fetched=50, companies_extracted=20)
        api.trigger_sync.return_value = TriggerResult(
            success=True,
            skipped=True,
            data=PipelineStatusSnapshot(last_sync=last_sync, stats=stats, data_is_fresh=True),
        )
        orchestrator = make_orchestrator()

        assert orchestrator.start_pipeline() is False

        state = orchestrator.state
        assert state.status == PipelineStatus.IDLE
        assert state.last_sync_time == last_sync
        assert state.data_freshness == DataFreshness.FRESH
        assert state.metrics == stats
        assert sources.latest.closed is True
        assert titles(notices) == ["Data is Fresh"]
        assert timers.pending == []


class TestRunLifecycle:
    """Live events through to the automatic return to idle."""

    def test_full_run(self, orchestrator, sources, clock, timers, notices):
        """Test a complete run driven by stream events."""
        orchestrator.start_pipeline()
        source = sources.latest

        source.emit_open()
        assert orchestrator.state.is_connected is True

        source.emit({"type": "connected"})
        source.emit({"type": "status", "status": "fetching", "progress": 5, "message": "Fetching newsletters"})
        source.emit({"type": "emails_fetched", "emailCount": 4, "progress": 10})
        clock.advance(60)
        source.emit({"type": "processing_email", "currentEmail": 2, "totalEmails": 4})

        state = orchestrator.state
        assert state.status == PipelineStatus.PROCESSING
        assert state.progress == 50
        assert state.metrics.processing_rate == 2
        assert state.estimated_time_remaining == 60

        source.emit(
            {
                "type": "company_discovered",
                "company": {"name": "Acme", "isNew": True},
                "stats": {"companiesExtracted": 1, "newCompanies": 1},
            }
        )
        source.emit(
            {
                "type": "complete",
                "stats": {"emailsFetched": 4, "companiesExtracted": 3, "newCompanies": 1, "totalMentions": 5},
            }
        )

        state = orchestrator.state
        assert state.status == PipelineStatus.COMPLETE
        assert state.progress == 100
        assert state.last_sync_time == clock()
        assert state.recent_discoveries[0].name == "Acme"
        assert state.activity_log[0].message == "Pipeline completed successfully"
        assert titles(notices) == ["Pipeline Complete"]
        assert notices[0].description == "Discovered 3 companies from 4 emails"

        # Stream closes shortly after the terminal event
        assert timers.pending_delays == [0.1]
        timers.advance(0.1)
        assert source.closed is True
        assert orchestrator.state.is_connected is False

        # Then the status returns to idle
        assert timers.pending_delays == [2.0]
        timers.advance(2.0)
        state = orchestrator.state
        assert state.status == PipelineStatus.IDLE
        assert state.progress == 100
        assert state.last_sync_success is True
        assert state.data_freshness == DataFreshness.FRESH

    def test_stream_error_event(self, orchestrator, sources, notices, timers):
        """Test that an error event ends the run and resets later."""
        orchestrator.start_pipeline()
        sources.latest.emit({"type": "error", "message": "Gmail token expired"})

        assert orchestrator.state.status == PipelineStatus.ERROR
        assert orchestrator.state.connection_error == "Gmail token expired"
        assert titles(notices) == ["Pipeline Error"]

        timers.advance(3)
        assert orchestrator.state.status == PipelineStatus.IDLE
        # A deliberate close keeps the reported error
        assert orchestrator.state.connection_error == "Gmail token expired"

    def test_new_run_cancels_pending_reset(self, orchestrator, sources, clock, timers):
        """Test that a run started during the grace period is not reset by old timers."""
        orchestrator.start_pipeline()
        sources.latest.emit({"type": "complete"})
        assert timers.pending_delays == [0.1]

        # Past the fresh-data window without firing the timers
        clock.advance(10 * 60)
        assert orchestrator.start_pipeline() is True
        assert timers.pending == []

        timers.advance(5)
        assert orchestrator.state.status == PipelineStatus.CONNECTING
        assert sources.latest.closed is False

    def test_reconnect_status_reported(self, orchestrator, sources, timers):
        """Test that a dropped stream shows the reconnecting message until reopened."""
        orchestrator.start_pipeline()
        sources.latest.emit_open()
        sources.latest.emit_error()

        assert orchestrator.state.is_connected is False
        assert orchestrator.state.connection_error == "Connection lost. Reconnecting..."
        assert orchestrator.state.status == PipelineStatus.CONNECTING

        timers.advance(1)
        sources.latest.emit_open()
        assert orchestrator.state.is_connected is True
        assert orchestrator.state.connection_error is None

    def test_exhausted_reconnects_end_run(self, orchestrator, api, sources, notices, timers):
        """Test that giving up on the stream fails the run so auto-sync can start again."""
        orchestrator.start_pipeline()
        sources.latest.emit_open()
        sources.latest.emit({"type": "processing_email", "currentEmail": 1, "totalEmails": 4})

        for _ in range(5):
            sources.latest.emit_error()
            timers.run_next()
        sources.latest.emit_error()

        state = orchestrator.state
        assert state.status == PipelineStatus.ERROR
        assert state.connection_error == "Failed to connect to pipeline stream"
        assert titles(notices) == ["Pipeline Error"]
        assert orchestrator.stream.is_active is False

        timers.advance(0.1)
        timers.advance(2.0)
        assert orchestrator.state.status == PipelineStatus.IDLE

        assert orchestrator.auto_sync_tick() is True
        assert api.trigger_sync.call_count == 2

    def test_stop_pipeline(self, orchestrator, sources):
        """Test that stop disconnects and returns to idle immediately."""
        orchestrator.start_pipeline()
        source = sources.latest

        orchestrator.stop_pipeline()

        assert source.closed is True
        assert orchestrator.state.status == PipelineStatus.IDLE
        assert orchestrator.state.activity_log[0].message == "Pipeline stopped"

        # Late events from the closed stream are ignored
        source.emit({"type": "complete"})
        assert orchestrator.state.status == PipelineStatus.IDLE

    def test_close_disconnects(self, orchestrator, sources):
        """Test that close() releases the stream."""
        orchestrator.start_pipeline()
        orchestrator.close()
        assert sources.latest.closed is True


class TestFreshnessAndAutoSync:
    """Status polling and the periodic auto-sync tick."""

    def test_check_data_freshness(self, orchestrator, api, clock):
        """Test that backend metadata updates last sync, freshness and metrics."""
        stats = PipelineMetrics(emails_fetched=9)
        api.get_sync_status.return_value = SyncStatus(
            success=True,
            data=PipelineStatusSnapshot(last_sync=clock() - timedelta(minutes=45), stats=stats),
        )

        assert orchestrator.check_data_freshness() is True

        state = orchestrator.state
        assert state.data_freshness == DataFreshness.STALE
        assert state.metrics == stats

    def test_check_data_freshness_failure(self, orchestrator, api):
        """Test that a failed poll leaves the state alone."""
        api.get_sync_status.side_effect = APIHTTPError("HTTP 500", 500, URL)
        before = orchestrator.state

        assert orchestrator.check_data_freshness() is False
        assert orchestrator.state is before

    def test_auto_sync_starts_when_outdated(self, orchestrator, api, clock):
        """Test that stale backend data triggers a run."""
        api.get_sync_status.return_value = SyncStatus(
            success=True,
            data=PipelineStatusSnapshot(last_sync=clock() - timedelta(hours=3)),
        )

        assert orchestrator.auto_sync_tick() is True
        api.trigger_sync.assert_called_once()

    def test_auto_sync_starts_when_never_synced(self, orchestrator, api):
        """Test that unknown freshness triggers a run."""
        assert orchestrator.auto_sync_tick() is True

    def test_auto_sync_skips_fresh_data(self, orchestrator, api, clock):
        """Test that fresh data does not trigger a run."""
        api.get_sync_status.return_value = SyncStatus(
            success=True,
            data=PipelineStatusSnapshot(last_sync=clock() - timedelta(minutes=10)),
        )

        assert orchestrator.auto_sync_tick() is False
        api.trigger_sync.assert_not_called()

    def test_auto_sync_uses_local_state_when_backend_down(self, make_orchestrator, api, clock):
        """Test that a failed poll still ages the locally known last sync."""
        api.get_sync_status.side_effect = APIHTTPError("Request failed", 0, URL)
        orchestrator = make_orchestrator(
            initial_state=PipelineState(
                last_sync_time=clock() - timedelta(hours=3),
                data_freshness=DataFreshness.FRESH,
            )
        )

        assert orchestrator.auto_sync_tick() is True

    def test_auto_sync_skips_while_running(self, orchestrator, api):
        """Test that a tick during a run does nothing."""
        orchestrator.start_pipeline()
        assert orchestrator.auto_sync_tick() is False
        assert api.trigger_sync.call_count == 1

    def test_auto_sync_disabled(self, orchestrator, api):
        """Test that a disabled auto-sync does not poll."""
        orchestrator.set_auto_sync_enabled(False)

        assert orchestrator.auto_sync_tick() is False
        api.get_sync_status.assert_not_called()
        assert orchestrator.state.activity_log[0].message == "Auto-sync disabled"

    def test_auto_sync_toggle_same_value_is_noop(self, orchestrator):
        """Test that setting the current value adds no log line."""
        orchestrator.set_auto_sync_enabled(True)
        assert orchestrator.state.activity_log == []

    def test_auto_sync_tick_never_raises(self, orchestrator, api):
        """Test that unexpected errors inside the tick are logged and swallowed."""
        api.get_sync_status.side_effect = RuntimeError("unexpected")
        assert orchestrator.auto_sync_tick() is False


class TestSubscribers:
    """State listeners."""

    def test_subscribe_and_unsubscribe(self, orchestrator):
        """Test that listeners see each new state until unsubscribed."""
        seen = []
        unsubscribe = orchestrator.subscribe(seen.append)

        orchestrator.dispatch(ActivityNoted("one"))
        unsubscribe()
        orchestrator.dispatch(ActivityNoted("two"))

        assert len(seen) == 1
        assert seen[0].activity_log[0].message == "one"

    def test_failing_listener_does_not_break_dispatch(self, orchestrator):
        """Test that a listener exception is contained."""
        seen = []

        def broken(state):
            raise RuntimeError("listener bug")

        orchestrator.subscribe(broken)
        orchestrator.subscribe(seen.append)
        orchestrator.dispatch(ActivityNoted("one"))

        assert len(seen) == 1

    def test_listener_may_dispatch(self, orchestrator):
        """Test that a listener can dispatch without deadlocking."""
        cleared = []

        def clear_once(state):
            if state.activity_log and not cleared:
                cleared.append(True)
                orchestrator.clear_activity_log()

        orchestrator.subscribe(clear_once)
        orchestrator.dispatch(ActivityNoted("one"))

        assert orchestrator.state.activity_log == []

    def test_unchanged_state_not_broadcast(self, orchestrator):
        """Test that no-op events do not call listeners."""
        seen = []
        orchestrator.subscribe(seen.append)

        orchestrator.dispatch(object())

        assert seen == []


class TestPersistence:
    """Snapshot saving and restoring."""

    def test_completed_run_is_persisted(self, make_orchestrator, persistence, sources, clock):
        """Test that the last sync survives into the store."""
        orchestrator = make_orchestrator(persistence=persistence)
        orchestrator.start_pipeline()
        sources.latest.emit(
            {"type": "company_discovered", "company": {"name": "Acme", "isNew": True}}
        )
        sources.latest.emit({"type": "complete", "stats": {"emailsFetched": 4}})

        stored = persistence.load()
        assert stored.last_sync_time == clock()
        assert stored.last_sync_success is True
        assert stored.metrics.emails_fetched == 4
        assert [c.name for c in stored.recent_discoveries] == ["Acme"]

    def test_saves_only_when_snapshot_changes(self, make_orchestrator, persistence):
        """Test that log-only changes do not rewrite the snapshot."""
        with patch.object(persistence, "save", wraps=persistence.save) as save:
            orchestrator = make_orchestrator(persistence=persistence)
            orchestrator.dispatch(ActivityNoted("one"))
            orchestrator.dispatch(ActivityNoted("two"))

        assert save.call_count == 1

    def test_restore(self, make_orchestrator, persistence, clock):
        """Test that a new session picks up the persisted fields."""
        last_sync = clock() - timedelta(hours=1)
        persistence.save(
            PipelineState(
                last_sync_time=last_sync,
                last_sync_success=True,
                data_freshness=DataFreshness.STALE,
                metrics=PipelineMetrics(emails_fetched=12, companies_extracted=4),
                recent_discoveries=[CompanyDiscovery(name="Acme")],
            )
        )

        orchestrator = make_orchestrator(persistence=persistence)
        seen = []
        orchestrator.subscribe(seen.append)

        assert orchestrator.restore() is True

        state = orchestrator.state
        assert state.status == PipelineStatus.IDLE
        assert state.last_sync_time == last_sync
        assert state.metrics.companies_extracted == 4
        assert state.recent_discoveries[0].name == "Acme"
        assert len(seen) == 1

    def test_restore_with_nothing_stored(self, make_orchestrator, persistence):
        """Test that an empty store leaves the defaults."""
        orchestrator = make_orchestrator(persistence=persistence)
        assert orchestrator.restore() is False
        assert orchestrator.state == PipelineState()

    def test_restore_without_persistence(self, orchestrator):
        """Test that restore is a no-op without an adapter."""
        assert orchestrator.restore() is False
