"""Job scheduler for delayed reviews and periodic maintenance."""

import logging
from datetime import datetime
from typing import Any, Callable, Optional, Sequence

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config.constants import BUSINESS_TIMEZONE
from utils.timeutils import utcnow

logger = logging.getLogger(__name__)


class JobManager:
    """
    Manages scheduled jobs.

    Uses APScheduler for async job scheduling. One-shot jobs carry the
    automated review retries; recurring jobs run cache sweeps, stalled
    review recovery and the daily note check.
    """

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        """Initialize the job manager."""
        self.scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self._is_running = False

    @property
    def is_running(self) -> bool:
        return self._is_running

    def start(self) -> None:
        """Start the scheduler."""
        if self._is_running:
            logger.warning("Scheduler is already running")
            return
        self.scheduler.start()
        self._is_running = True
        logger.info("Scheduler started")

    def stop(self) -> None:
        """Stop the scheduler."""
        if self._is_running:
            self.scheduler.shutdown(wait=False)
            self._is_running = False
            logger.info("Scheduler stopped")

    def schedule_once(
        self,
        func: Callable,
        run_at: datetime,
        job_id: str,
        name: Optional[str] = None,
        args: Sequence[Any] = (),
    ) -> None:
        """
        Run func once at run_at, replacing any job with the same id.

        A run_at in the past runs as soon as the scheduler is free.
        """
        now = utcnow()
        if run_at < now:
            run_at = now
        self.scheduler.add_job(
            func,
            DateTrigger(run_date=run_at),
            args=list(args),
            id=job_id,
            name=name or job_id,
            replace_existing=True,
            misfire_grace_time=None,
        )
        logger.debug(f"Scheduled {job_id} at {run_at.isoformat()}")

    def add_interval_job(
        self,
        func: Callable,
        job_id: str,
        name: str,
        seconds: Optional[int] = None,
        minutes: Optional[int] = None,
    ) -> None:
        """Add a recurring job."""
        self.scheduler.add_job(
            func,
            IntervalTrigger(seconds=seconds or 0, minutes=minutes or 0),
            id=job_id,
            name=name,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        logger.info(f"Registered job '{name}' every {minutes or 0}m{seconds or 0}s")

    def add_daily_job(self, func: Callable, job_id: str, name: str, hour: int) -> None:
        """Add a job that runs once a day at hour (business time zone)."""
        self.scheduler.add_job(
            func,
            CronTrigger(hour=hour, minute=0, timezone=BUSINESS_TIMEZONE),
            id=job_id,
            name=name,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        logger.info(f"Registered job '{name}' daily at {hour:02d}:00 {BUSINESS_TIMEZONE}")

    def cancel(self, job_id: str) -> None:
        job = self.scheduler.get_job(job_id)
        if job:
            job.remove()

    def has_job(self, job_id: str) -> bool:
        return self.scheduler.get_job(job_id) is not None
