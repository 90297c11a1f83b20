"""Browser pool for efficient Playwright browser reuse."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from playwright.async_api import async_playwright, Browser, BrowserContext, Playwright

logger = logging.getLogger(__name__)

SUPPORTED_BROWSERS = {"chromium", "firefox", "webkit"}


class BrowserPool:
    """
    Singleton pool that shares one browser process per engine.

    Every job gets its own context, so cookies, storage and cache are never
    shared between concurrent jobs. Creating a context takes ~50-100ms versus
    seconds for a browser launch.
    """

    _instance: BrowserPool | None = None
    _lock = asyncio.Lock()

    def __init__(self, headless: bool = True):
        self.headless = headless
        self._playwright: Playwright | None = None
        self._browsers: dict[str, Browser] = {}
        self._browser_launch_lock = asyncio.Lock()

    @classmethod
    async def get_instance(cls) -> BrowserPool:
        """Get or create the singleton browser pool instance."""
        if cls._instance is None:
            async with cls._lock:
                if cls._instance is None:
                    from ..config import get_settings

                    cls._instance = cls(headless=get_settings().headless)
        return cls._instance

    async def _ensure_browser(self, browser_type: str) -> Browser:
        """Ensure the requested browser engine is started, relaunching it after a crash."""
        normalized = (browser_type or "chromium").strip().lower()
        if normalized not in SUPPORTED_BROWSERS:
            raise ValueError(f"Unsupported browser_type: {browser_type!r}")

        async with self._browser_launch_lock:
            existing = self._browsers.get(normalized)
            if existing is not None and existing.is_connected():
                return existing
            if existing is not None:
                logger.warning(f"{normalized} browser disconnected, relaunching")

            if self._playwright is None:
                self._playwright = await async_playwright().start()

            launcher = getattr(self._playwright, normalized)
            browser = await launcher.launch(headless=self.headless)
            self._browsers[normalized] = browser
            return browser

    @asynccontextmanager
    async def get_context(
        self,
        *,
        owner: str,
        browser_type: str = "chromium",
        user_agent: str | None = None,
        locale: str | None = None,
        viewport: dict[str, int] | None = None,
        extra_http_headers: dict[str, str] | None = None,
    ) -> AsyncIterator[BrowserContext]:
        """
        Get a fresh, isolated browser context for one job.

        Args:
            owner: Store the context is opened for
        """
        browser = await self._ensure_browser(browser_type)
        context_kwargs: dict[str, object] = {}
        if user_agent:
            context_kwargs["user_agent"] = user_agent
        if locale:
            context_kwargs["locale"] = locale
        if viewport:
            context_kwargs["viewport"] = viewport
        if extra_http_headers:
            context_kwargs["extra_http_headers"] = extra_http_headers

        context = await browser.new_context(**context_kwargs)
        try:
            yield context
        finally:
            try:
                await context.close()
            except Exception as exc:
                # The browser may already be gone after a crash
                logger.debug(f"Closing context for {owner} failed: {exc}")

    async def close(self) -> None:
        """Close the browsers and cleanup resources."""
        for browser in list(self._browsers.values()):
            try:
                await browser.close()
            except Exception as exc:
                logger.debug(f"Browser close failed: {exc}")
        self._browsers = {}
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    @classmethod
    async def shutdown(cls) -> None:
        """Shutdown the singleton instance."""
        if cls._instance is not None:
            await cls._instance.close()
            cls._instance = None


@asynccontextmanager
async def get_browser_context(
    *,
    owner: str,
    browser_type: str = "chromium",
    user_agent: str | None = None,
    locale: str | None = None,
    viewport: dict[str, int] | None = None,
    extra_http_headers: dict[str, str] | None = None,
) -> AsyncIterator[BrowserContext]:
    """Get a browser context from the shared pool."""
    pool = await BrowserPool.get_instance()
    async with pool.get_context(
        owner=owner,
        browser_type=browser_type,
        user_agent=user_agent,
        locale=locale,
        viewport=viewport,
        extra_http_headers=extra_http_headers,
    ) as context:
        yield context
