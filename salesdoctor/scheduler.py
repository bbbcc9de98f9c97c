"""
Periodic cache refresh using APScheduler.

One interval job refreshes every dashboard snapshot in the background
(every 10 minutes by default), so dashboard reads rarely wait on the
upstream.

Features:
- Prevents job pile-up (max_instances=1, coalesce)
- Optional immediate first run on start
- Run/error counters from APScheduler job events
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MISSED,
    JobExecutionEvent,
)
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from salesdoctor.config import config
from salesdoctor.engine import AnalyticsEngine
from salesdoctor.observability import get_logger

logger = get_logger(__name__)

REFRESH_JOB_ID = "cache_refresh"


class JobStatus(Enum):
    """Job execution status."""
    SUCCESS = "success"
    FAILED = "failed"
    MISSED = "missed"


@dataclass
class JobInfo:
    """Run history summary of the refresh job."""
    id: str
    last_run: Optional[datetime] = None
    last_status: Optional[JobStatus] = None
    run_count: int = 0
    error_count: int = 0
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_status": self.last_status.value if self.last_status else None,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "last_error": self.last_error,
        }


class CacheRefreshScheduler:
    """
    Background refresher for an AnalyticsEngine's cache.

    Usage:
        scheduler = CacheRefreshScheduler(engine)
        scheduler.start()

        # Later...
        scheduler.shutdown()
    """

    def __init__(
        self,
        engine: AnalyticsEngine,
        interval_seconds: Optional[int] = None,
        timezone: Optional[str] = None,
    ):
        self.engine = engine
        self.interval_seconds = interval_seconds or config.cache.refresh_interval_seconds
        self.timezone = ZoneInfo(timezone or config.timezone)
        self.info = JobInfo(id=REFRESH_JOB_ID)
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._started = False

    def start(self, refresh_now: bool = True) -> None:
        """
        Start the scheduler. Must be called with a running event loop.

        Args:
            refresh_now: Also run the first refresh immediately
        """
        if self._started:
            logger.warning("Refresh scheduler already started")
            return

        self._scheduler = AsyncIOScheduler(timezone=self.timezone)
        self._scheduler.add_listener(self._on_job_executed, EVENT_JOB_EXECUTED)
        self._scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)
        self._scheduler.add_listener(self._on_job_missed, EVENT_JOB_MISSED)

        job_kwargs = {}
        if refresh_now:
            job_kwargs["next_run_time"] = datetime.now(self.timezone)

        self._scheduler.add_job(
            self.run_refresh,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=REFRESH_JOB_ID,
            name="Cache Refresh",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
            **job_kwargs,
        )
        self._scheduler.start()
        self._started = True
        logger.info(
            f"Refresh scheduler started, every {self.interval_seconds}s",
            extra={"interval_seconds": self.interval_seconds}
        )

    async def run_refresh(self) -> Dict[str, Any]:
        """Refresh every dashboard snapshot once."""
        logger.debug("Starting cache refresh job")
        status = await self.engine.refresh_all()
        logger.debug("Cache refresh job complete", extra={"keys": list(status.get("entries", {}))})
        return status

    # ═══════════════════════════════════════════════════════════════════════════
    # EVENT HANDLERS
    # ═══════════════════════════════════════════════════════════════════════════

    def _on_job_executed(self, event: JobExecutionEvent) -> None:
        if event.job_id != REFRESH_JOB_ID:
            return
        self.info.last_run = datetime.now(self.timezone)
        self.info.last_status = JobStatus.SUCCESS
        self.info.run_count += 1

    def _on_job_error(self, event: JobExecutionEvent) -> None:
        if event.job_id != REFRESH_JOB_ID:
            return
        self.info.last_run = datetime.now(self.timezone)
        self.info.last_status = JobStatus.FAILED
        self.info.run_count += 1
        self.info.error_count += 1
        self.info.last_error = str(event.exception) if event.exception else "Unknown error"
        logger.error(
            f"Cache refresh failed: {self.info.last_error}",
            extra={"job_id": event.job_id, "error": self.info.last_error}
        )

    def _on_job_missed(self, event: JobExecutionEvent) -> None:
        if event.job_id != REFRESH_JOB_ID:
            return
        self.info.last_status = JobStatus.MISSED
        logger.warning("Cache refresh missed its scheduled run", extra={"job_id": event.job_id})

    # ═══════════════════════════════════════════════════════════════════════════
    # PUBLIC API
    # ═══════════════════════════════════════════════════════════════════════════

    def next_run(self) -> Optional[datetime]:
        if not self._scheduler:
            return None
        job = self._scheduler.get_job(REFRESH_JOB_ID)
        return job.next_run_time if job else None

    def status(self) -> Dict[str, Any]:
        next_run = self.next_run()
        return {
            "running": self.is_running,
            "interval_seconds": self.interval_seconds,
            "next_run": next_run.isoformat() if next_run else None,
            **self.info.to_dict(),
        }

    def shutdown(self, wait: bool = False) -> None:
        """Shutdown the scheduler."""
        if self._scheduler and self._started:
            self._scheduler.shutdown(wait=wait)
            self._started = False
            logger.info("Refresh scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._started and self._scheduler is not None
