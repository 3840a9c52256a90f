"""Background scheduler for auto-sync and one-shot timers."""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import uuid4

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from pipeline_sync.logging import get_logger

logger = get_logger(__name__, component="scheduler")

AUTO_SYNC_JOB_ID = "pipeline-auto-sync"


class TimerHandle:
    """Cancellable reference to a one-shot job."""

    def __init__(self, scheduler: BackgroundScheduler, job_id: str):
        self._scheduler = scheduler
        self.job_id = job_id
        self.cancelled = False

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        try:
            self._scheduler.remove_job(self.job_id)
        except JobLookupError:
            # Already fired or already removed
            pass


class SchedulerService:
    """
    Wraps APScheduler's BackgroundScheduler.

    Hosts the recurring auto-sync job and the short one-shot timers used by
    the stream client (reconnect backoff) and the orchestrator (terminal
    reset), all on the scheduler's worker threads.
    """

    def __init__(self, max_workers: int = 4):
        self.scheduler = BackgroundScheduler(
            executors={"default": {"type": "threadpool", "max_workers": max_workers}},
            job_defaults={
                "max_instances": 1,
                "coalesce": True,
            },
            timezone=timezone.utc,
        )

    def start(self) -> None:
        if self.scheduler.running:
            return
        self.scheduler.start()
        logger.info("Scheduler started", extra={"event": "scheduler.started"})

    def shutdown(self, wait: bool = False) -> None:
        """
        Stop the scheduler.

        Args:
            wait: If True, wait for running jobs to complete before returning
        """
        logger.info(
            "Shutting down scheduler",
            extra={"event": "scheduler.stopping", "wait_for_jobs": wait},
        )
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
        logger.info("Scheduler shutdown complete", extra={"event": "scheduler.stopped"})

    def add_interval_job(
        self,
        func: Callable[[], object],
        interval_seconds: int,
        job_id: str = AUTO_SYNC_JOB_ID,
        name: str = "Pipeline auto-sync",
        run_immediately: bool = True,
    ) -> None:
        """
        Register a recurring job, replacing any job with the same id.

        Args:
            func: Callable run on each tick
            interval_seconds: Seconds between ticks
            job_id: Job identifier
            name: Human-readable job name
            run_immediately: Run the first tick now instead of after one interval
        """
        next_run = datetime.now(timezone.utc) if run_immediately else None
        job_kwargs = {"next_run_time": next_run} if next_run else {}
        self.scheduler.add_job(
            func=func,
            trigger=IntervalTrigger(seconds=interval_seconds, timezone=timezone.utc),
            id=job_id,
            name=name,
            replace_existing=True,
            misfire_grace_time=interval_seconds,
            **job_kwargs,
        )
        logger.info(
            f"Scheduled {name} every {interval_seconds} seconds",
            extra={
                "event": "scheduler.job.added",
                "job_id": job_id,
                "interval_seconds": interval_seconds,
                "next_run_time": next_run.isoformat() if next_run else None,
            },
        )

    def remove_job(self, job_id: str = AUTO_SYNC_JOB_ID) -> bool:
        try:
            self.scheduler.remove_job(job_id)
            return True
        except JobLookupError:
            return False

    def call_later(self, delay_seconds: float, func: Callable[[], object]) -> TimerHandle:
        """
        Run ``func`` once after ``delay_seconds``.

        Returns:
            TimerHandle whose cancel() is safe to call after the job has fired
        """
        job_id = f"timer-{uuid4().hex}"
        run_date = datetime.now(timezone.utc) + timedelta(seconds=max(0.0, delay_seconds))
        self.scheduler.add_job(
            func=func,
            trigger=DateTrigger(run_date=run_date, timezone=timezone.utc),
            id=job_id,
            misfire_grace_time=None,
        )
        logger.debug(
            f"Timer scheduled in {delay_seconds:.3f} s",
            extra={"event": "scheduler.timer.scheduled", "job_id": job_id, "delay_seconds": delay_seconds},
        )
        return TimerHandle(self.scheduler, job_id)

    def is_running(self) -> bool:
        return self.scheduler.running

    def get_next_run_time(self, job_id: str = AUTO_SYNC_JOB_ID) -> Optional[datetime]:
        job = self.scheduler.get_job(job_id)
        return job.next_run_time if job else None
