"""Scraper for La Anónima.

La Anónima is not on VTEX: categories come from the header menu, whose links
encode their level and id as `n{level}_{id}`, and product tiles carry their
data in `data-*` attributes.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any
from urllib.parse import urljoin

from playwright.async_api import Page

from ..models import CategoryNode, JobType, Product, ScrapeOutcome, StoreName
from ..utils import parse_price
from .base import BaseScraper, NAVIGATION_TIMEOUT_MS

if TYPE_CHECKING:
    from ..job_context import JobContext

BASE_URL = "https://www.laanonima.com.ar/"
MENU_LINK_RE = re.compile(r"n([1-3])_(\d+)")

_EXTRACT_MENU_JS = """
() => Array.from(document.querySelectorAll('a[class*="menu-n"]')).map(a => ({
    href: a.href,
    name: a.getAttribute('data-action') || (a.textContent || '').trim(),
}))
"""

_EXTRACT_TILES_JS = """
() => Array.from(document.querySelectorAll('a[data-tipo="portadaProduct"]')).map(a => {
    const img = a.querySelector('img.lazy') || a.querySelector('img');
    return {
        sku: a.getAttribute('data-codigo'),
        name: a.getAttribute('data-nombre'),
        brand: a.getAttribute('data-marca'),
        price: a.getAttribute('data-precio'),
        listPrice: a.getAttribute('data-precio_anterior'),
        href: a.href,
        imageUrl: img ? (img.getAttribute('data-src') || img.getAttribute('src')) : null,
        available: a.querySelector('.btnAgregarCarritoVarios') !== null,
    };
})
"""


def parse_menu_links(store: str, links: list[dict[str, Any]], max_level: int = 3) -> list[CategoryNode]:
    """
    Build category nodes from menu anchors in document order.

    A level-2 link belongs to the last level-1 link seen before it, a level-3
    link to the last level-2 link (or level-1 if none).
    """
    nodes: dict[str, CategoryNode] = {}
    last_by_level: dict[int, CategoryNode] = {}

    for link in links:
        href = link.get("href") or ""
        name = (link.get("name") or "").strip()
        match = MENU_LINK_RE.search(href)
        if not match or not name:
            continue
        level, external_id = int(match.group(1)), match.group(2)
        if level > max_level or external_id in nodes:
            continue

        parent = None
        for parent_level in range(level - 1, 0, -1):
            if parent_level in last_by_level:
                parent = last_by_level[parent_level]
                break
        if level > 1 and parent is None:
            continue

        node = CategoryNode(
            store=store,
            external_id=external_id,
            name=name,
            url=href,
            id_path=f"{parent.id_path}/{external_id}" if parent else external_id,
            parent_external_id=parent.external_id if parent else None,
            depth=level - 1,
        )
        nodes[external_id] = node
        last_by_level[level] = node
        for deeper in range(level + 1, 4):
            last_by_level.pop(deeper, None)

    # Nodes at a truncated level may still have children we did not look at
    parents = {n.parent_external_id for n in nodes.values() if n.parent_external_id}
    for node in nodes.values():
        truncated = max_level < 3 and node.depth == max_level - 1
        node.is_leaf = node.external_id not in parents and not truncated
    return list(nodes.values())


def parse_tile(store: str, tile: dict[str, Any], category_path: list[str]) -> Product | None:
    """Convert one product tile; tiles without sku or name are skipped."""
    sku = (tile.get("sku") or "").strip()
    name = (tile.get("name") or "").strip()
    if not sku or not name:
        return None
    price, _ = parse_price(tile.get("price"))
    list_price, _ = parse_price(tile.get("listPrice"))
    brand = (tile.get("brand") or "").strip()
    return Product(
        store=store,
        external_id=sku,
        title=name,
        brand=brand if brand and brand != "." else None,
        category_path=list(category_path),
        price=price or None,
        list_price=list_price or None,
        currency="ARS",
        url=tile.get("href"),
        ean=f"{store}-{sku}",
        image_url=tile.get("imageUrl") or None,
        available=bool(tile.get("available")),
    )


class LaAnonimaScraper(BaseScraper):
    """Crawl La Anónima's menu and category listings from the DOM."""

    store = StoreName.LA_ANONIMA.value
    display_name = "La Anónima"
    url = BASE_URL
    stealth = True

    async def _discover(self, page: Page, ctx: JobContext, max_level: int) -> ScrapeOutcome:
        links = await page.evaluate(_EXTRACT_MENU_JS)
        nodes = parse_menu_links(self.store, links, max_level=max_level)
        if not nodes:
            ctx.warn("No categories found in the menu")
            return ScrapeOutcome(error_count=ctx.error_count)

        await ctx.checkpoint()
        ctx.db.save_store_categories(nodes)
        leaves = [n for n in nodes if n.is_leaf]
        ctx.info(f"Discovered {len(nodes)} categories ({len(leaves)} leaves)")

        enqueued = 0
        if ctx.payload.get("enqueueProducts", max_level == 3):
            for leaf in leaves:
                ctx.enqueue(
                    JobType.SCRAPE_PRODUCTS.value,
                    {"externalId": leaf.external_id, "idPath": leaf.id_path, "url": leaf.url, "name": leaf.name},
                )
                enqueued += 1
            ctx.info(f"Queued {enqueued} leaf categories for product scraping")

        return ScrapeOutcome(
            items_found=len(nodes),
            error_count=ctx.error_count,
            details={"leafCount": len(leaves), "jobsEnqueued": enqueued},
        )

    async def discover_categories(self, page: Page, ctx: JobContext) -> ScrapeOutcome:
        return await self._discover(page, ctx, max_level=1)

    async def discover_subcategories(self, page: Page, ctx: JobContext) -> ScrapeOutcome:
        return await self._discover(page, ctx, max_level=3)

    async def scrape_products(self, page: Page, ctx: JobContext) -> ScrapeOutcome:
        targets = [t for t in self.scrape_targets(ctx) if t.get("url")]
        if not targets:
            ctx.warn("No categories discovered yet, run discover-subcategories first")
            return ScrapeOutcome(error_count=ctx.error_count)

        saved = 0
        created = 0
        for target in targets:
            await ctx.checkpoint()
            url = urljoin(BASE_URL, target["url"])
            ctx.info(f"Fetching products for category {target.get('name') or url}")
            await page.goto(url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT_MS)
            tiles = await page.evaluate(_EXTRACT_TILES_JS)
            category_path = [target["name"]] if target.get("name") else []

            for tile in tiles:
                try:
                    product = parse_tile(self.store, tile, category_path)
                except (TypeError, ValueError, AttributeError) as exc:
                    ctx.record_error(f"Could not parse product tile: {exc!r}", sku=tile.get("sku"))
                    continue
                if product is None:
                    continue
                if ctx.db.save_product(product):
                    created += 1
                saved += 1

            ctx.debug(f"Processed {len(tiles)} tiles from {url}")
            await ctx.pause()

        ctx.info(f"Saved {saved} products ({created} new) across {len(targets)} categories")
        return ScrapeOutcome(
            items_found=saved,
            error_count=ctx.error_count,
            details={"created": created, "categories": len(targets)},
        )
