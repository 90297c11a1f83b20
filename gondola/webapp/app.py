"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..config import Settings, get_settings
from ..db import CatalogDatabase
from ..errors import GondolaError, RateLimitExceeded
from ..extraction import ExtractionJob
from ..job_queue import JobQueue
from ..mappings import MappingStore
from ..scheduler import init_scheduler
from ..scraper_logs import ScraperLogBuffer
from ..screenshots import ScreenshotStore
from ..security import (
    ImageCache,
    IPRuleStore,
    IpInfoClient,
    ProxyConfigRepository,
    SecurityGate,
    SecurityLogStore,
)
from .deps import client_ip, ok, rejection_response
from .images import router as images_router
from .routes import router
from .security_routes import router as security_router
from .taxonomy import router as taxonomy_router

logger = logging.getLogger(__name__)

# Paths the middleware does not gate: the image proxy gates itself
UNGATED_PREFIXES = ("/images/", "/health")

IMAGE_FETCH_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def create_app(
    db: CatalogDatabase | None = None,
    settings: Settings | None = None,
    auto_start_scheduler: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    # Initialize database early so lifespan can use it
    database = db or CatalogDatabase(settings.db_path)

    proxy_config = ProxyConfigRepository(database)
    ip_rules = IPRuleStore(database)
    security_logs = SecurityLogStore(database)
    ip_info = IpInfoClient() if settings.ip_lookup_enabled else None
    gate = SecurityGate(
        database,
        config_repo=proxy_config,
        rules=ip_rules,
        events=security_logs,
        ip_info=ip_info,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifespan - start/stop scheduler."""
        scheduler = init_scheduler(
            database,
            settings.scheduler_interval,
            config_repo=proxy_config,
            settings=settings,
        )
        app.state.scheduler = scheduler
        if auto_start_scheduler:
            scheduler.start()

        yield

        if scheduler.is_running:
            scheduler.stop()
        await app.state.http_client.aclose()
        if ip_info is not None:
            ip_info.close()

    app = FastAPI(
        title="Gondola",
        description="Scraper orchestration, taxonomy mapping and security for supermarket price comparison",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.db = database
    app.state.queue = JobQueue(database)
    app.state.logs = ScraperLogBuffer(database, size=settings.log_buffer_size)
    app.state.screenshots = ScreenshotStore(settings.screenshots_dir)
    app.state.mappings = MappingStore(database, threshold=settings.auto_map_threshold)
    app.state.extraction = ExtractionJob(database, sample_size=settings.extraction_sample_size)
    app.state.proxy_config = proxy_config
    app.state.ip_rules = ip_rules
    app.state.security_logs = security_logs
    app.state.gate = gate
    app.state.scheduler = None

    config = proxy_config.get()
    app.state.image_cache = ImageCache(config.cache_max_size, config.cache_ttl)
    app.state.http_client = httpx.AsyncClient(
        headers={"User-Agent": IMAGE_FETCH_USER_AGENT},
        follow_redirects=True,
        timeout=httpx.Timeout(30.0),
    )

    @app.exception_handler(GondolaError)
    async def domain_error_handler(request: Request, exc: GondolaError):
        body = {"success": False, "message": exc.message}
        if exc.details:
            body["details"] = exc.details
        headers = {}
        if isinstance(exc, RateLimitExceeded) and exc.retry_after:
            headers["Retry-After"] = str(exc.retry_after)
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(body, status_code=exc.status_code, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(p) for p in err["loc"][1:]), "message": err["msg"]}
            for err in exc.errors()
        ]
        return JSONResponse(
            {"success": False, "message": "Invalid request", "details": {"errors": errors}},
            status_code=400,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            {"success": False, "message": exc.detail},
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )

    @app.middleware("http")
    async def security_gate(request: Request, call_next):
        path = request.url.path
        if path.startswith(UNGATED_PREFIXES):
            return await call_next(request)
        decision = await run_in_threadpool(
            gate.check,
            client_ip(request),
            request.headers.get("user-agent"),
            request.headers.get("referer"),
            path,
        )
        if not decision.allowed:
            return rejection_response(decision)
        return await call_next(request)

    @app.get("/health")
    async def health(request: Request):
        scheduler = request.app.state.scheduler
        return ok(
            {
                "status": "ok",
                "queue": request.app.state.queue.get_queue_status(),
                "scheduler": scheduler.get_status() if scheduler else None,
            }
        )

    # Latest screenshot per store
    settings.screenshots_dir.mkdir(parents=True, exist_ok=True)
    app.mount("/screenshots", StaticFiles(directory=settings.screenshots_dir), name="screenshots")

    # Include routes
    app.include_router(router)
    app.include_router(taxonomy_router)
    app.include_router(security_router)
    app.include_router(images_router)

    return app


# Default app instance for uvicorn
app = create_app()
