"""Execution context handed to a scraper for the duration of one job."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any, Callable

from .errors import JobCancelled
from .models import LogLevel

if TYPE_CHECKING:
    from playwright.async_api import Page

    from .db import CatalogDatabase
    from .job_queue import JobQueue
    from .scraper_logs import ScraperLogBuffer
    from .screenshots import ScreenshotStore

logger = logging.getLogger(__name__)


class JobContext:
    """
    Everything a running scraper may touch besides its browser page.

    Scrapers call `checkpoint()` between crawl steps. It raises JobCancelled
    once the job was cancelled or stopped, and refreshes the store screenshot
    when the screenshot interval has elapsed.
    """

    def __init__(
        self,
        job: dict,
        queue: JobQueue,
        db: CatalogDatabase,
        logs: ScraperLogBuffer,
        screenshots: ScreenshotStore | None = None,
        screenshot_interval: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.job = job
        self.job_id: int = job["id"]
        self.store: str = job["store"]
        self.job_type: str = job["job_type"]
        self.payload: dict = job.get("payload") or {}
        self.queue = queue
        self.db = db
        self.logs = logs
        self.screenshots = screenshots
        self.screenshot_interval = screenshot_interval
        self.error_count = 0
        self.page: Page | None = None
        self._clock = clock
        self._last_screenshot: float | None = None

    # ── Logging ──────────────────────────────────────────────────────────────

    def log(self, level: str, message: str, **details: Any) -> None:
        """Append a line to the store's log buffer."""
        self.logs.append(self.store, level, message, details or None, job_id=self.job_id)

    def info(self, message: str, **details: Any) -> None:
        self.log(LogLevel.INFO.value, message, **details)

    def debug(self, message: str, **details: Any) -> None:
        self.log(LogLevel.DEBUG.value, message, **details)

    def warn(self, message: str, **details: Any) -> None:
        self.log(LogLevel.WARN.value, message, **details)

    def record_error(self, message: str, level: str = LogLevel.WARN.value, **details: Any) -> None:
        """Count a per-item failure that does not abort the job."""
        self.error_count += 1
        self.log(level, message, **details)

    # ── Cooperative control ─────────────────────────────────────────────────

    @property
    def settings(self) -> dict:
        """Current store settings, read fresh on every access."""
        return self.db.get_scraper_settings(self.store)

    async def checkpoint(self) -> None:
        """Abort if cancellation was requested, and refresh the screenshot when due."""
        reason = self.queue.abort_reason(self.job_id)
        if reason is not None:
            self.warn(f"Job {self.job_id} aborting: {reason}")
            raise JobCancelled(self.job_id, reason)
        await self.screenshot()

    async def pause(self) -> None:
        """Sleep for the store's configured delay between requests."""
        delay_ms = self.settings["delay_between_requests"]
        if delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000)

    def enqueue(self, job_type: str, payload: dict | None = None) -> int:
        """Enqueue a follow-up job for the same store."""
        return self.queue.enqueue(self.store, job_type, payload=payload, source="discovery")

    # ── Screenshots ──────────────────────────────────────────────────────────

    def attach_page(self, page: Page) -> None:
        self.page = page

    async def screenshot(self, force: bool = False) -> bool:
        """
        Persist a screenshot of the attached page.

        Best effort: failures are logged and never affect the job.

        Returns:
            True if a screenshot was written
        """
        if self.page is None or self.screenshots is None:
            return False
        now = self._clock()
        if (
            not force
            and self._last_screenshot is not None
            and now - self._last_screenshot < self.screenshot_interval
        ):
            return False
        self._last_screenshot = now
        try:
            image = await self.page.screenshot(type="png")
            await asyncio.to_thread(self.screenshots.save, self.store, image)
            return True
        except Exception as exc:
            logger.debug(f"Screenshot for {self.store} failed: {exc}")
            return False
