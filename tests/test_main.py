"""Tests for the command-line entry point and its helpers."""

import logging
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from pipeline_sync import main as cli
from pipeline_sync.config.environment import EnvironmentConfig
from pipeline_sync.config.models import AppConfig
from pipeline_sync.domain.models import (
    ActivityLogEntry,
    DataFreshness,
    PipelineMetrics,
    PipelineState,
    PipelineStatus,
)
from pipeline_sync.persistence.exceptions import DatabaseConnectionError
from pipeline_sync.stream.client import StreamClient
from tests.helpers import DEFAULT_START

FIXTURES_DIR = Path(__file__).parent / "fixtures"

ENV_VARS = (
    "PIPELINE_API_URL",
    "PIPELINE_API_TOKEN",
    "STATE_DATABASE_URL",
    "LOG_LEVEL",
    "ENVIRONMENT",
)


class StubOrchestrator:
    """Minimal orchestrator double for the CLI helpers.

    ``start_pipeline`` moves to a running state; subscribing immediately
    delivers ``final_state`` when one is given, as if the run ended.
    """

    def __init__(self, start_result=True, final_state=None, freshness_ok=True, state=None):
        self.state = state or PipelineState()
        self.start_result = start_result
        self.final_state = final_state
        self.freshness_ok = freshness_ok
        self.stopped = False
        self.listeners = []

    def check_data_freshness(self):
        return self.freshness_ok

    def start_pipeline(self):
        if self.start_result:
            self.state = PipelineState(status=PipelineStatus.CONNECTING)
        return self.start_result

    def subscribe(self, listener):
        self.listeners.append(listener)
        if self.final_state is not None:
            self.state = self.final_state
            listener(self.final_state)
        return lambda: self.listeners.remove(listener)

    def stop_pipeline(self):
        self.stopped = True


def entry(sequence, message):
    return ActivityLogEntry(
        id=f"activity-{sequence}", message=message, timestamp=DEFAULT_START, sequence=sequence
    )


class TestLoadRuntimeConfig:
    """Log level priority: CLI > LOG_LEVEL > config file."""

    def test_config_file_level(self, clean_env):
        _, env_config = cli.load_runtime_config(FIXTURES_DIR / "valid_config.yaml", None)
        assert env_config.log_level == "DEBUG"

    def test_env_beats_config(self, clean_env, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "warning")
        _, env_config = cli.load_runtime_config(FIXTURES_DIR / "valid_config.yaml", None)
        assert env_config.log_level == "WARNING"

    def test_cli_beats_env(self, clean_env, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "WARNING")
        _, env_config = cli.load_runtime_config(FIXTURES_DIR / "valid_config.yaml", "ERROR")
        assert env_config.log_level == "ERROR"

    def test_default_level(self, clean_env):
        _, env_config = cli.load_runtime_config(FIXTURES_DIR / "minimal_config.yaml", None)
        assert env_config.log_level == "INFO"


class TestBuildOrchestrator:
    """Wiring of config into the orchestrator."""

    def test_wiring(self):
        """Test endpoints, token, reconnect policy and timing reach the components."""
        app_config = AppConfig.model_validate(
            {
                "api": {"base_url": "https://dash.example.com", "stream_read_timeout": 90},
                "stream": {"max_reconnect_attempts": 3, "base_delay_ms": 500},
                "sync": {"reset_delay_seconds": 1.5},
            }
        )
        scheduler = MagicMock()

        orchestrator = cli.build_orchestrator(
            app_config, EnvironmentConfig(api_token="secret"), scheduler
        )
        try:
            assert orchestrator.api_client.sync_url == "https://dash.example.com/api/pipeline/sync"
            assert orchestrator.api_client.session.headers["Authorization"] == "Bearer secret"
            assert isinstance(orchestrator.stream, StreamClient)
            assert orchestrator.stream.url == "https://dash.example.com/api/pipeline/sync/stream"
            assert orchestrator.stream.policy.max_attempts == 3
            assert orchestrator.stream.policy.base_delay_ms == 500
            assert orchestrator.sync_config.reset_delay_seconds == 1.5
            assert orchestrator.timers is scheduler
            assert orchestrator.persistence is None
        finally:
            orchestrator.api_client.close()


class TestStatusLogger:
    """Status and activity logging listener."""

    def test_logs_transitions_and_new_entries_once(self, caplog):
        caplog.set_level(logging.INFO, logger="pipeline_sync.main")
        status_logger = cli.StatusLogger()

        status_logger(
            PipelineState(status=PipelineStatus.CONNECTING, activity_log=[entry(1, "Starting")])
        )
        status_logger(
            PipelineState(
                status=PipelineStatus.CONNECTING,
                activity_log=[entry(2, "Connected"), entry(1, "Starting")],
            )
        )

        assert [r.getMessage() for r in caplog.records] == [
            "Pipeline status: connecting",
            "Starting",
            "Connected",
        ]
        assert caplog.records[0].event == "pipeline.status.changed"
        assert caplog.records[2].severity == "info"

    def test_cleared_log_starts_over(self, caplog):
        caplog.set_level(logging.INFO, logger="pipeline_sync.main")
        status_logger = cli.StatusLogger()
        status_logger(PipelineState(activity_log=[entry(2, "Old"), entry(1, "Older")]))
        status_logger(PipelineState(activity_log=[]))
        caplog.clear()

        status_logger(PipelineState(activity_log=[entry(1, "Fresh start")]))

        assert [r.getMessage() for r in caplog.records] == ["Fresh start"]


class TestRunOnce:
    """Single-run mode."""

    def test_completed_run(self):
        final = PipelineState(
            status=PipelineStatus.COMPLETE,
            progress=100,
            metrics=PipelineMetrics(emails_fetched=3, companies_extracted=4),
        )
        orchestrator = StubOrchestrator(final_state=final)

        assert cli.run_once(orchestrator, timeout_seconds=1) == 0
        assert orchestrator.listeners == []

    def test_failed_run(self):
        orchestrator = StubOrchestrator(final_state=PipelineState(status=PipelineStatus.ERROR))
        assert cli.run_once(orchestrator, timeout_seconds=1) == 1

    def test_already_reset_after_success(self):
        """Test a run that already returned to idle counts as success."""
        orchestrator = StubOrchestrator(
            final_state=PipelineState(status=PipelineStatus.IDLE, last_sync_success=True)
        )
        assert cli.run_once(orchestrator, timeout_seconds=1) == 0

    def test_not_started_because_fresh(self):
        orchestrator = StubOrchestrator(start_result=False)
        assert cli.run_once(orchestrator, timeout_seconds=1) == 0

    def test_not_started_because_trigger_failed(self):
        orchestrator = StubOrchestrator(
            start_result=False, state=PipelineState(status=PipelineStatus.ERROR)
        )
        assert cli.run_once(orchestrator, timeout_seconds=1) == 1

    def test_timeout_stops_run(self):
        orchestrator = StubOrchestrator()

        assert cli.run_once(orchestrator, timeout_seconds=0.05) == 1
        assert orchestrator.stopped is True


class TestPrintStatus:
    """Status mode output."""

    def test_prints_summary(self, capsys):
        state = PipelineState(
            last_sync_time=DEFAULT_START,
            data_freshness=DataFreshness.STALE,
            metrics=PipelineMetrics(
                emails_fetched=12, companies_extracted=5, new_companies=2, total_mentions=9
            ),
        )

        assert cli.print_status(StubOrchestrator(state=state)) == 0

        out = capsys.readouterr().out
        assert "Last sync:      2026-01-15T12:00:00.000Z" in out
        assert "Data freshness: stale" in out
        assert "Companies:      5 (2 new)" in out
        assert "Mentions:       9" in out

    def test_backend_failure(self, capsys):
        assert cli.print_status(StubOrchestrator(freshness_ok=False)) == 1

        captured = capsys.readouterr()
        assert "Last sync:      never" in captured.out
        assert "Backend status check failed" in captured.err


class TestMain:
    """End-to-end argument handling with collaborators patched out."""

    @pytest.fixture
    def patched(self, clean_env, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        orchestrator = StubOrchestrator()
        orchestrator.restore = MagicMock(return_value=False)
        orchestrator.close = MagicMock()
        with patch.object(cli, "configure_logging") as configure, patch.object(
            cli, "init_database"
        ) as init_db, patch.object(cli, "close_database"), patch.object(
            cli, "SchedulerService"
        ) as scheduler_cls, patch.object(
            cli, "build_orchestrator", return_value=orchestrator
        ) as build:
            yield {
                "orchestrator": orchestrator,
                "configure": configure,
                "init_db": init_db,
                "scheduler": scheduler_cls.return_value,
                "build": build,
            }

    def run_main(self, monkeypatch, *args):
        monkeypatch.setattr(sys, "argv", ["pipeline-sync", *args])
        return cli.main()

    def test_status_mode(self, patched, monkeypatch, capsys):
        assert self.run_main(monkeypatch, "--status") == 0

        orchestrator = patched["orchestrator"]
        orchestrator.restore.assert_called_once()
        orchestrator.close.assert_called_once()
        assert len(orchestrator.listeners) == 1
        patched["scheduler"].start.assert_called_once()
        patched["scheduler"].shutdown.assert_called_once_with(wait=False)
        patched["scheduler"].add_interval_job.assert_not_called()
        assert "Data freshness: unknown" in capsys.readouterr().out

    def test_once_mode(self, patched, monkeypatch):
        with patch.object(cli, "run_once", return_value=1) as run_once:
            assert self.run_main(monkeypatch, "--once", "--timeout", "30") == 1

        run_once.assert_called_once_with(patched["orchestrator"], 30.0)

    def test_log_level_flag(self, patched, monkeypatch):
        self.run_main(monkeypatch, "--status", "--log-level", "DEBUG")

        kwargs = patched["configure"].call_args.kwargs
        assert kwargs["level"] == "DEBUG"
        assert kwargs["format_type"] == "key-value"
        assert kwargs["environment"] == "local"

    def test_persistence_unavailable(self, patched, monkeypatch):
        patched["init_db"].side_effect = DatabaseConnectionError("disk full")

        assert self.run_main(monkeypatch, "--status") == 0

        args = patched["build"].call_args.args
        assert args[3] is None

    def test_configuration_error(self, patched, monkeypatch, capsys):
        assert self.run_main(monkeypatch, "--config", "missing.yaml", "--status") == 1

        assert "Configuration Error" in capsys.readouterr().err
        patched["build"].assert_not_called()

    def test_modes_are_exclusive(self, patched, monkeypatch):
        with pytest.raises(SystemExit):
            self.run_main(monkeypatch, "--once", "--status")

        with pytest.raises(SystemExit):
            self.run_main(monkeypatch, "--validate", "--once")

    def test_validate_mode(self, patched, monkeypatch, capsys):
        config = str(FIXTURES_DIR / "valid_config.yaml")
        assert self.run_main(monkeypatch, "--validate", "--config", config) == 0
        assert "✓" in capsys.readouterr().out

        config = str(FIXTURES_DIR / "invalid_types_config.yaml")
        assert self.run_main(monkeypatch, "--validate", "--config", config) == 1
        assert "http_request_timeout" in capsys.readouterr().out

        patched["init_db"].assert_not_called()
        patched["scheduler"].start.assert_not_called()
        patched["build"].assert_not_called()

    def test_validate_without_config_file(self, patched, monkeypatch, capsys):
        assert self.run_main(monkeypatch, "--validate") == 0
        assert "built-in defaults" in capsys.readouterr().out

        assert self.run_main(monkeypatch, "--validate", "--config", "missing.yaml") == 1
        assert "not found" in capsys.readouterr().out

    def test_daemon_mode_schedules_auto_sync(self, patched, monkeypatch, caplog):
        caplog.set_level(logging.INFO, logger="pipeline_sync.main")
        orchestrator = patched["orchestrator"]
        orchestrator.auto_sync_tick = MagicMock()
        orchestrator.auto_sync_enabled = True
        scheduler = patched["scheduler"]
        scheduler.get_next_run_time.return_value = DEFAULT_START

        # Shutdown event returns from wait() immediately
        with patch.object(cli, "signal"), patch.object(cli, "threading"):
            assert self.run_main(monkeypatch) == 0

        scheduler.add_interval_job.assert_called_once_with(
            orchestrator.auto_sync_tick, interval_seconds=60
        )
        started = [
            r for r in caplog.records if getattr(r, "event", None) == "service.daemon_mode.started"
        ]
        assert len(started) == 1
        assert started[0].next_run_time == "2026-01-15T12:00:00.000Z"
        orchestrator.close.assert_called_once()


# Fixtures
@pytest.fixture
def clean_env(monkeypatch):
    """Remove every variable the loader reads so the host environment cannot leak in."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
