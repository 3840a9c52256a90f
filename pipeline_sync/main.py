"""Main entry point for the pipeline sync client."""

from dotenv import load_dotenv
load_dotenv()

import argparse
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Optional, Tuple

import requests

from pipeline_sync.api import PipelineAPIClient
from pipeline_sync.config.environment import EnvironmentConfig
from pipeline_sync.config.exceptions import ConfigurationError
from pipeline_sync.config.loader import load_config, validate_config_file
from pipeline_sync.config.models import AppConfig
from pipeline_sync.domain.models import PipelineState, PipelineStatus
from pipeline_sync.logging import get_logger
from pipeline_sync.logging.config import configure_logging
from pipeline_sync.persistence import PersistenceAdapter, close_database, init_database
from pipeline_sync.persistence.exceptions import PersistenceError
from pipeline_sync.pipeline import SyncOrchestrator
from pipeline_sync.scheduler import SchedulerService
from pipeline_sync.stream import ReconnectPolicy, StreamClient, requests_source_factory
from pipeline_sync.utils.timestamps import format_timestamp

logger = get_logger(__name__, component="cli")

DEFAULT_ONCE_TIMEOUT_SECONDS = 3600


def load_runtime_config(
    config_path: Optional[Path], log_level_override: Optional[str]
) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load configuration and settle the effective log level.

    Log level priority: CLI > LOG_LEVEL environment variable > config file.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    app_config, env_config = load_config(config_path)

    if log_level_override:
        env_config.log_level = log_level_override
    elif not env_config.log_level:
        env_config.log_level = app_config.logging.level or "INFO"

    return app_config, env_config


def build_orchestrator(
    app_config: AppConfig,
    env_config: EnvironmentConfig,
    scheduler: SchedulerService,
    persistence: Optional[PersistenceAdapter] = None,
) -> SyncOrchestrator:
    """Wire the API client, stream client and scheduler timers into an orchestrator."""
    api_client = PipelineAPIClient.from_config(app_config, auth_token=env_config.api_token)

    # The stream reader gets its own session; requests sessions are not thread-safe
    stream_session = requests.Session()
    stream_session.headers.update(api_client.session.headers)
    source_factory = requests_source_factory(
        session=stream_session,
        connect_timeout=app_config.api.http_request_timeout,
        read_timeout=app_config.api.stream_read_timeout,
    )

    def stream_factory(on_event, on_connection_change) -> StreamClient:
        return StreamClient(
            api_client.stream_url,
            on_event=on_event,
            on_connection_change=on_connection_change,
            timers=scheduler,
            policy=ReconnectPolicy.from_config(app_config.stream),
            source_factory=source_factory,
        )

    return SyncOrchestrator(
        api_client=api_client,
        stream_factory=stream_factory,
        timers=scheduler,
        sync_config=app_config.sync,
        persistence=persistence,
    )


class StatusLogger:
    """State listener that logs status transitions and new activity entries."""

    def __init__(self):
        self._status: Optional[PipelineStatus] = None
        self._last_sequence = 0

    def __call__(self, state: PipelineState) -> None:
        if state.status != self._status:
            logger.info(
                f"Pipeline status: {state.status.value}",
                extra={
                    "event": "pipeline.status.changed",
                    "status": state.status.value,
                    "progress": state.progress,
                },
            )
            self._status = state.status

        top = state.activity_log[0].sequence if state.activity_log else 0
        if top < self._last_sequence:
            # Log was cleared or a new run started
            self._last_sequence = 0
        for entry in reversed(state.activity_log):
            if entry.sequence > self._last_sequence:
                logger.info(
                    entry.message,
                    extra={"event": "pipeline.activity", "severity": entry.severity.value},
                )
        self._last_sequence = top


def run_once(orchestrator: SyncOrchestrator, timeout_seconds: float) -> int:
    """
    Start one run and wait until it leaves the active statuses.

    Returns:
        0 when the run completed or no run was needed, 1 otherwise
    """
    orchestrator.check_data_freshness()
    started = orchestrator.start_pipeline()

    if not started:
        state = orchestrator.state
        return 1 if state.status == PipelineStatus.ERROR else 0

    finished = threading.Event()

    def on_state(state: PipelineState) -> None:
        if not state.is_running:
            finished.set()

    unsubscribe = orchestrator.subscribe(on_state)
    try:
        on_state(orchestrator.state)
        if not finished.wait(timeout_seconds):
            logger.error(
                f"Pipeline run did not finish within {timeout_seconds} seconds",
                extra={"event": "service.once.timeout", "timeout_seconds": timeout_seconds},
            )
            orchestrator.stop_pipeline()
            return 1
    finally:
        unsubscribe()

    state = orchestrator.state
    succeeded = state.status == PipelineStatus.COMPLETE or (
        state.status == PipelineStatus.IDLE and state.last_sync_success
    )
    metrics = state.metrics
    logger.info(
        f"Run finished: {metrics.emails_fetched} emails, "
        f"{metrics.companies_extracted} companies, {metrics.new_companies} new",
        extra={
            "event": "service.once.completed",
            "succeeded": succeeded,
            "emails_fetched": metrics.emails_fetched,
            "companies_extracted": metrics.companies_extracted,
            "new_companies": metrics.new_companies,
            "total_mentions": metrics.total_mentions,
        },
    )
    return 0 if succeeded else 1


def print_status(orchestrator: SyncOrchestrator) -> int:
    """Check freshness against the backend and print a summary to stdout."""
    ok = orchestrator.check_data_freshness()
    state = orchestrator.state
    metrics = state.metrics

    last_sync = format_timestamp(state.last_sync_time) if state.last_sync_time else "never"
    print(f"Last sync:      {last_sync}")
    print(f"Data freshness: {state.data_freshness.value}")
    print(f"Emails fetched: {metrics.emails_fetched}")
    print(f"Companies:      {metrics.companies_extracted} ({metrics.new_companies} new)")
    print(f"Mentions:       {metrics.total_mentions}")
    if not ok:
        print("Backend status check failed; showing locally stored values", file=sys.stderr)
    return 0 if ok else 1


def main() -> int:
    """
    Main entry point for the pipeline sync client.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    start_time = time.time()
    parser = argparse.ArgumentParser(
        description="Pipeline Sync - trigger and follow Substack intelligence pipeline runs"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: config.yaml or config/config.yaml if present)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config and environment)",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--once",
        action="store_true",
        help="Run a single sync, wait for it to finish and exit",
    )
    mode.add_argument(
        "--status",
        action="store_true",
        help="Print last-sync information and exit",
    )
    mode.add_argument(
        "--validate",
        action="store_true",
        help="Validate the configuration file and exit",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_ONCE_TIMEOUT_SECONDS,
        help=f"Seconds to wait for a --once run (default: {DEFAULT_ONCE_TIMEOUT_SECONDS})",
    )

    args = parser.parse_args()

    if args.validate:
        return 0 if validate_config_file(args.config) else 1

    scheduler: Optional[SchedulerService] = None
    orchestrator: Optional[SyncOrchestrator] = None

    try:
        app_config, env_config = load_runtime_config(args.config, args.log_level)

        configure_logging(
            level=env_config.log_level,
            format_type=app_config.logging.format,
            environment=env_config.environment,
        )

        logger.info(
            "Pipeline sync starting",
            extra={
                "event": "service.starting",
                "config_path": str(args.config) if args.config else None,
                "log_level": env_config.log_level,
                "mode": "once" if args.once else "status" if args.status else "daemon",
                "api_base_url": app_config.api.base_url,
            },
        )

        persistence: Optional[PersistenceAdapter] = None
        try:
            init_database(env_config.database_url)
            persistence = PersistenceAdapter()
        except PersistenceError as e:
            logger.warning(
                f"State database unavailable, continuing without persistence: {e}",
                extra={"event": "service.persistence.disabled"},
            )

        scheduler = SchedulerService()
        scheduler.start()

        orchestrator = build_orchestrator(app_config, env_config, scheduler, persistence)
        orchestrator.restore()
        orchestrator.subscribe(StatusLogger())

        if args.status:
            return print_status(orchestrator)

        if args.once:
            return run_once(orchestrator, args.timeout)

        # Daemon mode
        shutdown_event = threading.Event()

        def signal_handler(signum, frame):
            logger.info(
                f"Received signal {signum}, shutting down",
                extra={"event": "service.signal_received", "signal": signum},
            )
            shutdown_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        scheduler.add_interval_job(
            orchestrator.auto_sync_tick,
            interval_seconds=app_config.sync.auto_sync_interval_seconds,
        )

        logger.info(
            "Auto-sync running. Press Ctrl+C to stop",
            extra={
                "event": "service.daemon_mode.started",
                "auto_sync_enabled": orchestrator.auto_sync_enabled,
                "interval_seconds": app_config.sync.auto_sync_interval_seconds,
                "next_run_time": format_timestamp(scheduler.get_next_run_time()),
            },
        )

        try:
            shutdown_event.wait()
        except KeyboardInterrupt:
            logger.info(
                "Keyboard interrupt received, shutting down",
                extra={"event": "service.keyboard_interrupt"},
            )

        return 0

    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        logger.error(
            f"Configuration error: {e}",
            extra={"event": "config.error", "error_type": "ConfigurationError"},
        )
        return 1
    except KeyboardInterrupt:
        print("\nShutdown requested by user", file=sys.stderr)
        return 0
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        logger.critical(
            "Fatal error during startup",
            extra={
                "event": "service.startup.failed",
                "error_type": type(e).__name__,
                "error": str(e),
            },
            exc_info=True,
        )
        return 1
    finally:
        if orchestrator is not None:
            orchestrator.close()
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        close_database()
        logger.info(
            "Pipeline sync stopped",
            extra={"event": "service.stopping", "uptime_seconds": round(time.time() - start_time, 2)},
        )


if __name__ == "__main__":
    sys.exit(main())
