"""Background scheduler for periodic scrapes and housekeeping."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, UTC
from typing import TYPE_CHECKING

from .config import Settings, get_settings
from .job_queue import JobQueue
from .models import JobType
from .scrapers import supports
from .security.events import SecurityLogStore
from .security.proxy_config import ProxyConfigRepository

if TYPE_CHECKING:
    from .db import CatalogDatabase

logger = logging.getLogger(__name__)


class ScraperScheduler:
    """Enqueues due product scrapes and runs retention and alert checks as a background task."""

    def __init__(
        self,
        db: CatalogDatabase,
        check_interval: int | None = None,
        settings: Settings | None = None,
        config_repo: ProxyConfigRepository | None = None,
    ):
        """
        Initialize the scheduler.

        Args:
            db: Database instance
            check_interval: Seconds between ticks (defaults to the configured interval)
            settings: Runtime settings (defaults to the environment's)
            config_repo: Image proxy config shared with the security gate
        """
        self.settings = settings or get_settings()
        self.db = db
        self.queue = JobQueue(db)
        self.security_logs = SecurityLogStore(db)
        self.config_repo = config_repo or ProxyConfigRepository(db)
        self.check_interval = check_interval or self.settings.scheduler_interval
        self._task: asyncio.Task | None = None
        self._running = False
        self.last_tick: str | None = None

    @property
    def is_running(self) -> bool:
        """Check if the scheduler is currently running."""
        return self._running

    def start(self):
        """Start the scheduler background task."""
        if self._running:
            logger.warning("Scheduler is already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Scheduler started")

    def stop(self):
        """Stop the scheduler background task."""
        self._running = False
        if self._task:
            self._task.cancel()
            self._task = None
        logger.info("Scheduler stopped")

    async def _run_loop(self):
        """Main scheduler loop."""
        while self._running:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Scheduler error: {e}")

            # Wait before next check
            await asyncio.sleep(self.check_interval)

    async def tick(self, now: datetime | None = None) -> dict:
        """
        Run one scheduler pass.

        Returns:
            Summary with the jobs enqueued and rows purged
        """
        now = now or datetime.now(UTC)
        enqueued = self.enqueue_due_scrapes(now)
        purged_jobs = self.queue.purge_expired(
            completed_ttl_hours=self.settings.completed_job_ttl_hours,
            failed_ttl_days=self.settings.failed_job_ttl_days,
        )
        config = self.config_repo.get(refresh=True)
        purged_events = self.security_logs.purge_older_than(config.retention_days)
        alert = await self.security_logs.check_alerts(config)
        self.last_tick = now.isoformat()

        if purged_jobs:
            logger.info(f"Purged {purged_jobs} expired jobs")
        return {
            "enqueued": enqueued,
            "purgedJobs": purged_jobs,
            "purgedSecurityEvents": purged_events,
            "alert": alert,
        }

    def enqueue_due_scrapes(self, now: datetime | None = None) -> list[int]:
        """
        Enqueue product scrapes for stores whose last run is older than their update frequency.

        A store with no discovered categories gets a subcategory discovery
        instead, which queues the product scrapes itself.
        """
        now = now or datetime.now(UTC)
        job_ids = []
        for settings in self.db.list_scraper_settings():
            store = settings["store"]
            if not settings["enabled"] or settings["paused"]:
                continue
            if not self._is_due(settings, now):
                continue

            if self.db.list_store_categories(store, leaves_only=True):
                job_type = JobType.SCRAPE_PRODUCTS.value
            else:
                job_type = JobType.DISCOVER_SUBCATEGORIES.value
            if not supports(store, job_type):
                continue

            # Skip if already queued or running
            if self.queue.has_pending(store, JobType.SCRAPE_PRODUCTS.value) or self.queue.has_pending(
                store, JobType.DISCOVER_SUBCATEGORIES.value
            ):
                logger.debug(f"Store {store} already has a scrape queued/running, skipping")
                continue

            job_id = self.queue.enqueue(store, job_type, source="scheduled")
            self.db.touch_last_run(store, now.isoformat())
            job_ids.append(job_id)
            logger.info(f"Scheduled {job_type} for {store}: job_id={job_id}")
        return job_ids

    @staticmethod
    def _is_due(settings: dict, now: datetime) -> bool:
        last_run = settings.get("last_run")
        if not last_run:
            return True
        elapsed = now - datetime.fromisoformat(last_run)
        return elapsed >= timedelta(hours=settings["product_update_frequency"])

    def get_status(self) -> dict:
        """Get current scheduler status."""
        queue_status = self.queue.get_queue_status()
        return {
            "running": self._running,
            "waitingJobs": queue_status["waiting"] + queue_status["delayed"],
            "activeJobs": queue_status["active"],
            "checkInterval": self.check_interval,
            "lastTick": self.last_tick,
        }


# Global scheduler instance (set when app starts)
_scheduler: ScraperScheduler | None = None


def get_scheduler() -> ScraperScheduler | None:
    """Get the global scheduler instance."""
    return _scheduler


def init_scheduler(
    db: CatalogDatabase,
    check_interval: int | None = None,
    config_repo: ProxyConfigRepository | None = None,
    settings: Settings | None = None,
) -> ScraperScheduler:
    """Initialize and return the global scheduler instance."""
    global _scheduler
    _scheduler = ScraperScheduler(db, check_interval, settings=settings, config_repo=config_repo)
    return _scheduler
