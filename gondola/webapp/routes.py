"""Admin panel routes: login, scraper orchestration and product price history."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response
from pydantic import BaseModel, ConfigDict, Field

from ..errors import NotFoundError
from ..job_queue import JobQueue, job_to_dict
from ..models import STORE_DEFAULTS, JobStatus, JobType
from ..scrapers import ensure_supported, get_scraper_display_name, supports, SCRAPERS
from .auth import (
    SESSION_COOKIE,
    create_session,
    invalidate_session,
    require_auth,
    verify_password,
)
from .deps import get_db, get_queue, ok

router = APIRouter(prefix="/api/panel")


class LoginRequest(BaseModel):
    password: str


class JobRequest(BaseModel):
    """Job command body: the target store plus any payload fields."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    store_name: str = Field(alias="storeName")
    priority: int = 0

    def payload(self) -> dict:
        return dict(self.model_extra or {})


class SettingsUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enabled: bool | None = None
    max_concurrency: int | None = Field(None, alias="maxConcurrency")
    retry_count: int | None = Field(None, alias="retryCount")
    delay_between_requests: int | None = Field(None, alias="delayBetweenRequests")
    product_update_frequency: int | None = Field(None, alias="productUpdateFrequency")


# --- Authentication ---


@router.post("/auth/login")
async def login(request: Request, body: LoginRequest, response: Response):
    """Check the admin password and start a session."""
    settings = request.app.state.settings
    if not verify_password(body.password, settings.admin_password):
        response.status_code = 401
        return {"success": False, "message": "Invalid password"}

    token = create_session(get_db(request), settings.session_ttl_hours)
    response.set_cookie(
        key=SESSION_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        max_age=settings.session_ttl_hours * 3600,
    )
    return ok(message="Logged in")


@router.post("/auth/logout")
async def logout(request: Request, response: Response):
    """Logout and clear session."""
    session_token = request.cookies.get(SESSION_COOKIE)
    if session_token:
        invalidate_session(get_db(request), session_token)
    response.delete_cookie(SESSION_COOKIE)
    return ok(message="Logged out")


# --- Scrapers ---


def _store_or_404(store: str) -> str:
    if store not in STORE_DEFAULTS:
        raise NotFoundError(f"Unknown store '{store}'")
    return store


def _store_status(store: str, settings: dict, counts: dict, queue: JobQueue) -> str:
    if settings["paused"]:
        return "paused"
    if counts.get(JobStatus.ACTIVE.value):
        return "running"
    latest = queue.list_jobs(store=store, limit=1)
    if latest and latest[0]["status"] == JobStatus.FAILED.value:
        return "error"
    return "idle"


@router.get("/scraper/status")
async def scraper_status(request: Request, _: str = Depends(require_auth)):
    """Per-store status, metrics and settings."""
    db = get_db(request)
    queue = get_queue(request)
    logs = request.app.state.logs
    screenshots = request.app.state.screenshots
    store_counts = queue.get_store_counts()

    stores = []
    for settings in db.list_scraper_settings():
        store = settings["store"]
        counts = store_counts.get(store, {})
        stores.append(
            {
                "id": store,
                "name": get_scraper_display_name(store),
                "status": _store_status(store, settings, counts, queue),
                "lastRun": settings["last_run"],
                "hasScraper": store in SCRAPERS,
                "jobTypes": [t.value for t in JobType if supports(store, t.value)],
                "screenshotUrl": (
                    f"/screenshots/{store}/latest.jpg" if screenshots.path_for(store).exists() else None
                ),
                "metrics": {
                    "productsCount": db.count_products(store),
                    "errorCount": logs.count_errors(store),
                    "activeJobs": counts.get(JobStatus.ACTIVE.value, 0),
                    "waitingJobs": counts.get(JobStatus.WAITING.value, 0)
                    + counts.get(JobStatus.DELAYED.value, 0),
                },
                "settings": {
                    "enabled": settings["enabled"],
                    "maxConcurrency": settings["max_concurrency"],
                    "retryCount": settings["retry_count"],
                    "delayBetweenRequests": settings["delay_between_requests"],
                    "productUpdateFrequency": settings["product_update_frequency"],
                    "priority": settings["priority"],
                },
            }
        )
    return ok(stores)


def _enqueue_command(request: Request, job_type: str, body: JobRequest) -> dict:
    ensure_supported(body.store_name, job_type)
    job_id = get_queue(request).enqueue(
        body.store_name,
        job_type,
        payload=body.payload(),
        priority=body.priority,
        source="manual",
    )
    return ok({"jobId": job_id}, message=f"{job_type} queued for {body.store_name}")


@router.post("/scraper/discover-categories")
async def discover_categories(request: Request, body: JobRequest, _: str = Depends(require_auth)):
    return _enqueue_command(request, JobType.DISCOVER_CATEGORIES.value, body)


@router.post("/scraper/discover-subcategories")
async def discover_subcategories(request: Request, body: JobRequest, _: str = Depends(require_auth)):
    return _enqueue_command(request, JobType.DISCOVER_SUBCATEGORIES.value, body)


@router.post("/scraper/scrape-products")
async def scrape_products(request: Request, body: JobRequest, _: str = Depends(require_auth)):
    return _enqueue_command(request, JobType.SCRAPE_PRODUCTS.value, body)


@router.post("/scraper/scrape-all")
async def scrape_all(request: Request, _: str = Depends(require_auth)):
    """Queue a product scrape for every enabled store that has a scraper."""
    queue = get_queue(request)
    job_type = JobType.SCRAPE_PRODUCTS.value
    queued = []
    skipped = []
    for settings in get_db(request).list_scraper_settings():
        store = settings["store"]
        if not settings["enabled"] or not supports(store, job_type):
            continue
        if queue.has_pending(store, job_type):
            skipped.append(store)
            continue
        queued.append({"store": store, "jobId": queue.enqueue(store, job_type, source="manual")})
    return ok({"queued": queued, "skipped": skipped}, message=f"Queued {len(queued)} scrapes")


@router.post("/scraper/purge-queue")
async def purge_queue(request: Request, _: str = Depends(require_auth)):
    deleted = get_queue(request).purge()
    return ok({"deleted": deleted}, message=f"Deleted {deleted} finished jobs")


@router.get("/scraper/queue")
async def scraper_queue(
    request: Request,
    status: str | None = None,
    store: str | None = None,
    limit: int = Query(100, ge=1, le=1000),
    _: str = Depends(require_auth),
):
    queue = get_queue(request)
    jobs = queue.list_jobs(status=status, store=store, limit=limit)
    return ok({"jobs": [job_to_dict(job) for job in jobs], "counts": queue.get_queue_status()})


@router.delete("/scraper/jobs/{job_id}")
async def cancel_job(request: Request, job_id: int, _: str = Depends(require_auth)):
    """Cancel a job: pending jobs fail immediately, active jobs stop at their next checkpoint."""
    status = get_queue(request).cancel(job_id)
    return ok({"jobId": job_id, "status": status}, message=f"Job {job_id} cancelled")


@router.get("/scraper/{store}/logs")
async def scraper_logs(
    request: Request,
    store: str,
    limit: int = Query(100, ge=1, le=500),
    _: str = Depends(require_auth),
):
    return ok(request.app.state.logs.tail(_store_or_404(store), limit=limit))


@router.patch("/scraper/{store}/settings")
async def update_settings(request: Request, store: str, body: SettingsUpdate, _: str = Depends(require_auth)):
    changes = body.model_dump(exclude_none=True)
    settings = get_db(request).update_scraper_settings(_store_or_404(store), **changes)
    return ok(settings, message="Settings updated")


@router.delete("/scraper/{store}/screenshots")
async def clear_screenshots(request: Request, store: str, _: str = Depends(require_auth)):
    deleted = request.app.state.screenshots.clear(_store_or_404(store))
    return ok({"deleted": deleted})


@router.post("/scraper/{store}/stop")
async def stop_scraper(request: Request, store: str, _: str = Depends(require_auth)):
    """Fail pending jobs and signal active ones to stop."""
    stopped = get_queue(request).stop_store(_store_or_404(store))
    return ok({"stopped": stopped}, message=f"Stopped {stopped} jobs")


@router.post("/scraper/{store}/pause")
async def pause_scraper(request: Request, store: str, _: str = Depends(require_auth)):
    settings = get_db(request).set_store_paused(_store_or_404(store), True)
    return ok(settings, message=f"{store} paused")


@router.post("/scraper/{store}/resume")
async def resume_scraper(request: Request, store: str, _: str = Depends(require_auth)):
    settings = get_db(request).set_store_paused(_store_or_404(store), False)
    return ok(settings, message=f"{store} resumed")


# --- Products ---


@router.get("/products/{product_id}/price-history")
async def product_price_history(request: Request, product_id: int, _: str = Depends(require_auth)):
    """Recorded price changes of a scraped product, oldest first."""
    db = get_db(request)
    product = db.get_product(product_id)
    history = [
        {"price": row["price"], "listPrice": row["list_price"], "scrapedAt": row["scraped_at"]}
        for row in db.get_price_history(product_id)
    ]
    return ok({"productId": product["id"], "store": product["store"], "history": history})
