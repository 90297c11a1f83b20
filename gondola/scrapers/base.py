"""Base scraper class for all stores."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from playwright.async_api import Error as PlaywrightError, Page
from playwright_stealth import Stealth

from ..errors import InfrastructureError
from ..models import JobType, ScrapeOutcome
from .browser_pool import get_browser_context

if TYPE_CHECKING:
    from ..job_context import JobContext

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)
NAVIGATION_TIMEOUT_MS = 60_000


class BaseScraper(ABC):
    """
    Abstract base class for all store scrapers.

    A scraper handles the job types listed in `job_types`. `run()` opens an
    isolated browser context, loads the store home page (sets cookies and
    session), dispatches to the handler for the job type and takes a screenshot
    at start and end. Browser and network failures surface as
    InfrastructureError so the queue retries the job.
    """

    store: str
    display_name: str
    url: str
    job_types: tuple[str, ...] = (
        JobType.DISCOVER_CATEGORIES.value,
        JobType.DISCOVER_SUBCATEGORIES.value,
        JobType.SCRAPE_PRODUCTS.value,
    )
    browser_type: str = "chromium"
    user_agent: str | None = DEFAULT_USER_AGENT
    locale: str | None = "es-AR"
    viewport: dict[str, int] | None = {"width": 1366, "height": 900}
    stealth: bool = False

    def supports(self, job_type: str) -> bool:
        return job_type in self.job_types

    async def run(self, ctx: JobContext) -> ScrapeOutcome:
        """Execute one job inside its own browser context."""
        try:
            async with get_browser_context(
                owner=self.store,
                browser_type=self.browser_type,
                user_agent=self.user_agent,
                locale=self.locale,
                viewport=self.viewport,
            ) as context:
                page = await context.new_page()
                if self.stealth:
                    await Stealth().apply_stealth_async(page)
                ctx.attach_page(page)

                await ctx.checkpoint()
                ctx.info(f"Loading {self.url}...")
                await page.goto(self.url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT_MS)
                await ctx.screenshot(force=True)

                outcome = await self.dispatch(page, ctx)

                await ctx.screenshot(force=True)
                return outcome
        except PlaywrightError as exc:
            raise InfrastructureError(f"Browser failure: {exc}") from exc

    async def dispatch(self, page: Page, ctx: JobContext) -> ScrapeOutcome:
        if ctx.job_type == JobType.DISCOVER_CATEGORIES.value:
            return await self.discover_categories(page, ctx)
        if ctx.job_type == JobType.DISCOVER_SUBCATEGORIES.value:
            return await self.discover_subcategories(page, ctx)
        if ctx.job_type == JobType.SCRAPE_PRODUCTS.value:
            return await self.scrape_products(page, ctx)
        raise ValueError(f"Unsupported job type '{ctx.job_type}' for {self.store}")

    @abstractmethod
    async def discover_categories(self, page: Page, ctx: JobContext) -> ScrapeOutcome:
        """Crawl the top level of the store taxonomy."""
        ...

    async def discover_subcategories(self, page: Page, ctx: JobContext) -> ScrapeOutcome:
        """Crawl the full store taxonomy. Defaults to the top level only."""
        return await self.discover_categories(page, ctx)

    @abstractmethod
    async def scrape_products(self, page: Page, ctx: JobContext) -> ScrapeOutcome:
        """Crawl product listings and upsert them into the catalog."""
        ...

    def scrape_targets(self, ctx: JobContext) -> list[dict]:
        """Categories a scrape-products job covers: the payload's, or every known leaf."""
        if ctx.payload.get("idPath") or ctx.payload.get("url"):
            return [ctx.payload]
        return [
            {
                "externalId": row["external_id"],
                "idPath": row["id_path"],
                "url": row["url"],
                "name": row["name"],
            }
            for row in ctx.db.list_store_categories(self.store, leaves_only=True)
        ]
