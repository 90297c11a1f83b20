"""Shared scraper for stores running on the VTEX commerce platform.

VTEX exposes a public catalog API on every storefront:

- `/api/catalog_system/pub/category/tree/{depth}` returns the category tree
- `/api/catalog_system/pub/products/search?fq=C:/{idPath}/&_from=&_to=` pages
  through a category's products, 50 at a time

Requests go through the page's own request context so they carry the cookies
set by loading the home page.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from playwright.async_api import Page

from ..models import CategoryNode, JobType, Product, ScrapeOutcome
from .base import BaseScraper

if TYPE_CHECKING:
    from ..job_context import JobContext

PAGE_SIZE = 50
# VTEX refuses _from values past 2500
MAX_OFFSET = 2500
TOP_LEVEL_DEPTH = 1
FULL_TREE_DEPTH = 3


def flatten_category_tree(
    store: str,
    nodes: list[dict[str, Any]],
    parent: CategoryNode | None = None,
) -> list[CategoryNode]:
    """
    Flatten a VTEX category tree into nodes carrying their id path.

    A node is a leaf when VTEX reports no children; at the truncation depth of a
    shallow tree VTEX still sets `hasChildren`, which wins over the empty list.
    """
    flat: list[CategoryNode] = []
    for raw in nodes or []:
        external_id = str(raw["id"])
        children = raw.get("children") or []
        has_children = bool(raw.get("hasChildren", bool(children)))
        node = CategoryNode(
            store=store,
            external_id=external_id,
            name=str(raw.get("name") or external_id).strip(),
            url=raw.get("url"),
            id_path=f"{parent.id_path}/{external_id}" if parent else external_id,
            parent_external_id=parent.external_id if parent else None,
            depth=parent.depth + 1 if parent else 0,
            is_leaf=not has_children,
        )
        flat.append(node)
        if children:
            flat.extend(flatten_category_tree(store, children, node))
    return flat


def parse_vtex_product(
    store: str,
    raw: dict[str, Any],
    fallback_category: list[str] | None = None,
) -> Product | None:
    """
    Convert one product from the VTEX search API.

    Returns:
        Product, or None when the product has no SKUs

    Raises:
        KeyError, TypeError, ValueError: On malformed product payloads
    """
    items = raw.get("items") or []
    if not items:
        return None

    main = items[0]
    sellers = main.get("sellers") or []
    seller = next((s for s in sellers if s.get("sellerDefault")), sellers[0] if sellers else {})
    offer = seller.get("commertialOffer") or {}

    available = (offer.get("AvailableQuantity") or 0) > 0
    price = offer.get("Price")
    list_price = offer.get("ListPrice")
    # VTEX reports 0 for out-of-stock offers
    if not price:
        price = None
    if not list_price:
        list_price = None

    images = main.get("images") or []
    categories = raw.get("categories") or []
    if categories:
        category_path = [part for part in str(categories[0]).split("/") if part]
    else:
        category_path = list(fallback_category or [])

    title = str(raw["productName"]).strip()
    if not title:
        raise ValueError("empty productName")

    return Product(
        store=store,
        external_id=str(raw["productId"]),
        title=title,
        brand=(raw.get("brand") or "").strip() or None,
        category_path=category_path,
        price=float(price) if price is not None else None,
        list_price=float(list_price) if list_price is not None else None,
        currency="ARS",
        url=raw.get("link"),
        ean=main.get("ean") or None,
        image_url=images[0].get("imageUrl") if images else None,
        available=available,
    )


class VtexScraper(BaseScraper):
    """Scraper for a VTEX storefront. Subclasses only set store, display name and url."""

    async def _fetch_json(self, page: Page, url: str, ctx: JobContext) -> Any | None:
        """GET a JSON endpoint. Bad responses count as errors; transport failures propagate."""
        response = await page.request.get(url, timeout=60_000)
        if not response.ok:
            ctx.record_error(
                f"API request failed with status {response.status}",
                url=url,
                status=response.status,
            )
            return None
        try:
            return await response.json()
        except ValueError as exc:
            ctx.record_error(f"Invalid JSON from API: {exc}", url=url)
            return None

    async def _discover(self, page: Page, ctx: JobContext, depth: int) -> ScrapeOutcome:
        base = self.url.rstrip("/")
        ctx.info(f"Fetching category tree (depth {depth})...")
        tree = await self._fetch_json(page, f"{base}/api/catalog_system/pub/category/tree/{depth}", ctx)
        if not tree:
            ctx.warn("API returned 0 categories")
            return ScrapeOutcome(error_count=ctx.error_count)

        await ctx.checkpoint()
        nodes = flatten_category_tree(self.store, tree)
        ctx.db.save_store_categories(nodes)
        leaves = [n for n in nodes if n.is_leaf]
        ctx.info(f"Discovered {len(nodes)} categories ({len(leaves)} leaves)")

        enqueued = 0
        wants_products = ctx.payload.get("enqueueProducts", depth == FULL_TREE_DEPTH)
        if wants_products:
            for leaf in leaves:
                ctx.enqueue(
                    JobType.SCRAPE_PRODUCTS.value,
                    {
                        "externalId": leaf.external_id,
                        "idPath": leaf.id_path,
                        "url": leaf.url,
                        "name": leaf.name,
                    },
                )
                enqueued += 1
            ctx.info(f"Queued {enqueued} leaf categories for product scraping")

        return ScrapeOutcome(
            items_found=len(nodes),
            error_count=ctx.error_count,
            details={"leafCount": len(leaves), "jobsEnqueued": enqueued},
        )

    async def discover_categories(self, page: Page, ctx: JobContext) -> ScrapeOutcome:
        return await self._discover(page, ctx, TOP_LEVEL_DEPTH)

    async def discover_subcategories(self, page: Page, ctx: JobContext) -> ScrapeOutcome:
        return await self._discover(page, ctx, FULL_TREE_DEPTH)

    async def scrape_products(self, page: Page, ctx: JobContext) -> ScrapeOutcome:
        base = self.url.rstrip("/")
        targets = self.scrape_targets(ctx)
        if not targets:
            ctx.warn("No categories discovered yet, run discover-subcategories first")
            return ScrapeOutcome(error_count=ctx.error_count)

        saved = 0
        created = 0
        for target in targets:
            id_path = str(target.get("idPath") or target.get("externalId")).strip("/")
            fallback = [target["name"]] if target.get("name") else []
            ctx.info(f"Fetching products for category {target.get('name') or id_path}", idPath=id_path)

            offset = 0
            while offset < MAX_OFFSET:
                await ctx.checkpoint()
                url = (
                    f"{base}/api/catalog_system/pub/products/search"
                    f"?fq=C:/{id_path}/&_from={offset}&_to={offset + PAGE_SIZE - 1}"
                )
                batch = await self._fetch_json(page, url, ctx)
                if not batch:
                    break

                for raw in batch:
                    try:
                        product = parse_vtex_product(self.store, raw, fallback)
                    except (KeyError, TypeError, ValueError, AttributeError) as exc:
                        ctx.record_error(
                            f"Could not parse product: {exc!r}",
                            productId=raw.get("productId") if isinstance(raw, dict) else None,
                        )
                        continue
                    if product is None:
                        continue
                    if ctx.db.save_product(product):
                        created += 1
                    saved += 1

                ctx.debug(f"Processed {len(batch)} products (offset {offset})")
                if len(batch) < PAGE_SIZE:
                    break
                offset += PAGE_SIZE
                await ctx.pause()

        ctx.info(f"Saved {saved} products ({created} new) across {len(targets)} categories")
        return ScrapeOutcome(
            items_found=saved,
            error_count=ctx.error_count,
            details={"created": created, "categories": len(targets)},
        )
