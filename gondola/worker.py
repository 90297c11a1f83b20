"""Worker process for executing scraper jobs from the queue."""

from __future__ import annotations

import asyncio
import logging
import signal
import uuid
from time import perf_counter
from typing import Callable, Protocol

from .config import Settings, get_settings
from .db import CatalogDatabase
from .errors import InfrastructureError, JobCancelled
from .job_context import JobContext
from .job_queue import CANCELLED_REASON, JobQueue
from .models import LogLevel, ScrapeOutcome
from .scraper_logs import ScraperLogBuffer
from .screenshots import ScreenshotStore

logger = logging.getLogger(__name__)


class Runnable(Protocol):
    async def run(self, ctx: JobContext) -> ScrapeOutcome: ...


def _default_scraper_factory(store: str) -> Runnable:
    from .scrapers import get_scraper

    return get_scraper(store)


class Worker:
    """Worker that polls the job queue and executes scraper jobs in parallel."""

    def __init__(
        self,
        db: CatalogDatabase,
        settings: Settings | None = None,
        scraper_factory: Callable[[str], Runnable] | None = None,
        poll_interval: float | None = None,
        max_concurrent_jobs: int | None = None,
        job_timeout: float | None = None,
    ):
        """
        Initialize the worker.

        Args:
            db: Database instance
            settings: Runtime settings (defaults to the environment's)
            scraper_factory: Returns the scraper for a store; tests inject fakes
            poll_interval: Seconds between queue polls when idle
            max_concurrent_jobs: Maximum number of jobs this process runs in parallel
            job_timeout: Seconds a job may run before it counts as failed
        """
        settings = settings or get_settings()
        self.db = db
        self.settings = settings
        self.queue = JobQueue(db)
        self.logs = ScraperLogBuffer(db, size=settings.log_buffer_size)
        self.screenshots = ScreenshotStore(settings.screenshots_dir)
        self.scraper_factory = scraper_factory or _default_scraper_factory
        self.poll_interval = poll_interval if poll_interval is not None else settings.worker_poll_interval
        self.stale_check_interval = settings.stale_check_interval
        self.max_concurrent_jobs = max_concurrent_jobs or settings.max_concurrent_jobs
        self.job_timeout = job_timeout or settings.job_timeout_seconds
        self.worker_id = f"worker-{uuid.uuid4().hex[:8]}"
        self._running = False
        self._running_jobs: dict[int, asyncio.Task] = {}

    async def start(self) -> None:
        """Start the worker loop."""
        self._running = True
        logger.info(f"Worker {self.worker_id} starting...")

        # Setup signal handlers for graceful shutdown
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_shutdown)

        stale_task = asyncio.create_task(self._stale_job_checker())

        try:
            await self._run_loop()
        finally:
            stale_task.cancel()
            try:
                await stale_task
            except asyncio.CancelledError:
                pass
            await self.drain()
            from .scrapers.browser_pool import BrowserPool

            await BrowserPool.shutdown()
            logger.info(f"Worker {self.worker_id} stopped")

    async def _run_loop(self) -> None:
        """Main worker loop - poll queue and execute jobs in parallel."""
        while self._running:
            try:
                if await self.poll_once():
                    # Don't sleep - immediately try to claim another job
                    continue
                await asyncio.sleep(self.poll_interval)
            except Exception as e:
                logger.error(f"Worker loop error: {e}")
                await asyncio.sleep(self.poll_interval)

    async def poll_once(self) -> bool:
        """
        Claim one eligible job and start it in the background.

        Returns:
            True if a job was started
        """
        self._cleanup_finished_tasks()
        if len(self._running_jobs) >= self.max_concurrent_jobs:
            return False

        job = self.queue.claim_next(self.worker_id)
        if not job:
            return False

        task = asyncio.create_task(self._execute_job(job))
        self._running_jobs[job["id"]] = task
        return True

    async def drain(self) -> None:
        """Wait for all running job tasks to finish."""
        if self._running_jobs:
            await asyncio.gather(*self._running_jobs.values(), return_exceptions=True)
        self._cleanup_finished_tasks()

    def _cleanup_finished_tasks(self) -> None:
        """Remove completed tasks from the running jobs dict."""
        finished = [job_id for job_id, task in self._running_jobs.items() if task.done()]
        for job_id in finished:
            task = self._running_jobs.pop(job_id)
            if not task.cancelled() and task.exception():
                logger.error(f"Job {job_id} task raised exception: {task.exception()}")

    async def _execute_job(self, job: dict) -> None:
        """Execute a single scraper job and record its outcome."""
        job_id = job["id"]
        store = job["store"]
        job_type = job["job_type"]
        ctx = JobContext(
            job,
            queue=self.queue,
            db=self.db,
            logs=self.logs,
            screenshots=self.screenshots,
            screenshot_interval=self.settings.screenshot_interval_seconds,
        )

        ctx.info(
            f"Executing job {job_id}: {job_type} (attempt {job['attempts']}/{job['max_attempts']})",
            jobId=job_id,
        )
        start_time = perf_counter()

        try:
            scraper = self.scraper_factory(store)
            outcome = await asyncio.wait_for(scraper.run(ctx), timeout=self.job_timeout)
        except JobCancelled as exc:
            status = self.queue.fail(job_id, exc.reason or CANCELLED_REASON, retryable=False)
            ctx.warn(f"Job {job_id} cancelled ({status})")
            return
        except TimeoutError:
            status = self.queue.fail(job_id, f"Execution timeout after {int(self.job_timeout)}s")
            ctx.log(LogLevel.ERROR.value, f"Job {job_id} timed out ({status})")
            return
        except InfrastructureError as exc:
            status = self.queue.fail(job_id, exc.message)
            ctx.log(LogLevel.ERROR.value, f"Job {job_id} failed: {exc.message} ({status})")
            return
        except Exception as exc:
            status = self.queue.fail(job_id, f"{type(exc).__name__}: {exc}")
            ctx.log(LogLevel.ERROR.value, f"Job {job_id} crashed: {exc!r} ({status})")
            logger.exception(f"Job {job_id} crashed")
            return

        duration = perf_counter() - start_time
        result = outcome.to_dict()
        result["errorCount"] = max(result.get("errorCount", 0), ctx.error_count)
        if self.queue.complete(job_id, result=result):
            self.db.touch_last_run(store)
            ctx.info(
                f"Job {job_id} completed: {outcome.items_found} items, "
                f"{result['errorCount']} errors in {duration:.2f}s",
            )
        else:
            ctx.warn(f"Job {job_id} finished after it was stopped or cancelled; result discarded")

    async def _stale_job_checker(self) -> None:
        """Periodically reclaim jobs that overran the execution timeout."""
        while self._running:
            await asyncio.sleep(self.stale_check_interval)
            try:
                # Grace period so a job hitting wait_for's timeout is failed by its own task
                reclaimed = self.queue.reclaim_stale_jobs(self.job_timeout + self.stale_check_interval)
                if reclaimed > 0:
                    logger.warning(f"Reclaimed {reclaimed} stale jobs")
            except Exception as e:
                logger.error(f"Stale job check error: {e}")

    def _handle_shutdown(self) -> None:
        """Handle shutdown signals gracefully."""
        logger.info(f"Worker {self.worker_id} received shutdown signal")
        self._running = False

        if self._running_jobs:
            logger.warning(f"Waiting for {len(self._running_jobs)} running jobs to finish")

    def get_status(self) -> dict:
        """Get current worker status."""
        return {
            "worker_id": self.worker_id,
            "running": self._running,
            "running_jobs": list(self._running_jobs.keys()),
            "running_job_count": len(self._running_jobs),
            "max_concurrent_jobs": self.max_concurrent_jobs,
            "queue_status": self.queue.get_queue_status(),
        }


async def run_worker(poll_interval: float | None = None) -> None:
    """
    Run the worker (entry point for CLI).

    Args:
        poll_interval: Seconds between queue polls when idle
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    db = CatalogDatabase()
    worker = Worker(db, poll_interval=poll_interval)
    await worker.start()
