"""Scraper registry.

Scrapers are auto-discovered from modules in this package. Any concrete
`BaseScraper` subclass with a non-empty `store` attribute is registered under
that store; the job types it handles come from its `job_types`.
"""

from __future__ import annotations

import importlib
import inspect
import logging
import pkgutil

from ..errors import ValidationError
from ..models import STORE_DEFAULTS
from .base import BaseScraper

__all__ = [
    "BaseScraper",
    "ensure_supported",
    "get_scraper",
    "list_scrapers",
    "get_scraper_display_name",
    "supports",
]

logger = logging.getLogger(__name__)


def _discover_scrapers() -> dict[str, type[BaseScraper]]:
    discovered: dict[str, type[BaseScraper]] = {}
    failures: dict[str, Exception] = {}

    # Walk sibling modules under this package (gondola.scrapers.*).
    for module_info in pkgutil.iter_modules(__path__):  # type: ignore[name-defined]
        if module_info.ispkg:
            continue
        module_name = module_info.name
        if module_name.startswith("_") or module_name in {"base", "browser_pool"}:
            continue

        full_name = f"{__name__}.{module_name}"
        try:
            module = importlib.import_module(full_name)
        except Exception as exc:  # pragma: no cover - depends on optional modules
            failures[full_name] = exc
            continue

        for _, obj in inspect.getmembers(module, inspect.isclass):
            if not issubclass(obj, BaseScraper) or inspect.isabstract(obj):
                continue
            store = getattr(obj, "store", None)
            if not isinstance(store, str) or not store.strip():
                continue

            if store in discovered and discovered[store] is not obj:
                logger.warning(
                    "Duplicate scraper for store '%s': %s.%s and %s.%s (keeping first)",
                    store,
                    discovered[store].__module__,
                    discovered[store].__name__,
                    obj.__module__,
                    obj.__name__,
                )
                continue
            discovered[store] = obj

    for mod, exc in failures.items():
        logger.warning("Failed to import scraper module %s: %r", mod, exc)

    return dict(sorted(discovered.items(), key=lambda kv: kv[0]))


SCRAPERS: dict[str, type[BaseScraper]] = _discover_scrapers()


def get_scraper(store: str) -> BaseScraper:
    """Get a scraper instance for a store."""
    if store not in SCRAPERS:
        available = ", ".join(SCRAPERS.keys())
        raise ValidationError(f"No scraper for store '{store}'. Available: {available}")
    return SCRAPERS[store]()


def list_scrapers() -> list[str]:
    """List all stores that have a scraper."""
    return list(SCRAPERS.keys())


def supports(store: str, job_type: str) -> bool:
    """Whether a registered scraper handles this job type for the store."""
    cls = SCRAPERS.get(store)
    return cls is not None and job_type in cls.job_types


def ensure_supported(store: str, job_type: str) -> None:
    """Reject a (store, job type) pair that no scraper can run."""
    if store not in STORE_DEFAULTS:
        raise ValidationError(f"Unknown store '{store}'")
    if not supports(store, job_type):
        raise ValidationError(f"Store '{store}' has no scraper for '{job_type}'")


def get_scraper_display_name(store: str) -> str:
    """Get a human-friendly display name for a store."""
    cls = SCRAPERS.get(store)
    if cls is not None:
        return cls.display_name
    defaults = STORE_DEFAULTS.get(store)
    return defaults.display_name if defaults else store
