"""Public image proxy for product images."""

from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, RedirectResponse, Response

from .deps import client_ip, get_db, rejection_response

logger = logging.getLogger(__name__)

router = APIRouter()

DEFAULT_CONTENT_TYPE = "image/jpeg"


@router.get("/images/{product_id}")
async def proxy_image(request: Request, product_id: int):
    """
    Serve a product's upstream image through the security gate and cache.

    An inactive proxy redirects to the upstream URL.
    """
    product = get_db(request).get_product(product_id)
    image_url = product.get("image_url")
    if not image_url:
        return JSONResponse({"success": False, "message": "Product has no image"}, status_code=404)

    config = request.app.state.proxy_config.get()
    if not config.is_active:
        return RedirectResponse(image_url, status_code=302)

    decision = await run_in_threadpool(
        request.app.state.gate.check,
        client_ip(request),
        request.headers.get("user-agent"),
        request.headers.get("referer"),
        request.url.path,
        None,
        True,
    )
    if not decision.allowed:
        return rejection_response(decision)

    headers = {"Cache-Control": f"public, max-age={config.cache_ttl}"}
    cache = request.app.state.image_cache
    key = str(product_id)
    if config.cache_enabled:
        cached = cache.get(key)
        if cached is not None:
            return Response(cached.content, media_type=cached.content_type, headers={**headers, "X-Cache": "HIT"})

    client: httpx.AsyncClient = request.app.state.http_client
    try:
        upstream = await client.get(image_url)
        upstream.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning(f"Image fetch failed for product {product_id}: {exc}")
        return JSONResponse({"success": False, "message": "Upstream image unavailable"}, status_code=502)

    content_type = upstream.headers.get("content-type", DEFAULT_CONTENT_TYPE)
    if config.cache_enabled:
        cache.put(key, upstream.content, content_type)
    return Response(upstream.content, media_type=content_type, headers={**headers, "X-Cache": "MISS"})
