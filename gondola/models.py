"""Data models shared across the scraper, queue and taxonomy modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class StoreName(str, Enum):
    CARREFOUR = "carrefour"
    COTO = "coto"
    DIA = "dia"
    DISCO = "disco"
    JUMBO = "jumbo"
    LA_ANONIMA = "la_anonima"
    VEA = "vea"


class JobType(str, Enum):
    DISCOVER_CATEGORIES = "discover-categories"
    DISCOVER_SUBCATEGORIES = "discover-subcategories"
    SCRAPE_PRODUCTS = "scrape-products"


class JobStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"


TERMINAL_STATUSES = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class LabelKind(str, Enum):
    BRAND = "brand"
    CATEGORY = "category"


class MappingMethod(str, Enum):
    MANUAL = "manual"
    AUTO = "auto"
    AI = "ai"


class VisitorState(str, Enum):
    NORMAL = "NORMAL"
    BOT = "BOT"
    SCRAPER = "SCRAPER"
    SUSPICIOUS = "SUSPICIOUS"
    MALICIOUS = "MALICIOUS"
    IP_BLOCKED = "IP_BLOCKED"


@dataclass(frozen=True)
class StoreDefaults:
    """Static per-store queue defaults."""

    display_name: str
    max_concurrency: int
    priority: int


STORE_DEFAULTS: dict[str, StoreDefaults] = {
    StoreName.COTO.value: StoreDefaults("Coto", 2, 1),
    StoreName.CARREFOUR.value: StoreDefaults("Carrefour", 2, 2),
    StoreName.JUMBO.value: StoreDefaults("Jumbo", 1, 3),
    StoreName.DIA.value: StoreDefaults("Día", 1, 4),
    StoreName.VEA.value: StoreDefaults("Vea", 1, 5),
    StoreName.DISCO.value: StoreDefaults("Disco", 1, 6),
    StoreName.LA_ANONIMA.value: StoreDefaults("La Anónima", 1, 7),
}


@dataclass
class Product:
    """A product scraped from a store listing."""

    store: str
    external_id: str
    title: str
    brand: str | None = None
    category_path: list[str] = field(default_factory=list)
    price: float | None = None
    list_price: float | None = None
    currency: str | None = "ARS"
    url: str | None = None
    ean: str | None = None
    image_url: str | None = None
    available: bool = True

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "store": self.store,
            "externalId": self.external_id,
            "title": self.title,
            "brand": self.brand,
            "categoryPath": list(self.category_path),
            "price": self.price,
            "listPrice": self.list_price,
            "currency": self.currency,
            "url": self.url,
            "ean": self.ean,
            "imageUrl": self.image_url,
            "available": self.available,
        }


@dataclass
class CategoryNode:
    """A node of a store's category tree."""

    store: str
    external_id: str
    name: str
    url: str | None
    id_path: str
    parent_external_id: str | None = None
    depth: int = 0
    is_leaf: bool = True


@dataclass
class ScrapeOutcome:
    """Summary a scraper returns for one job."""

    items_found: int = 0
    error_count: int = 0
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "itemsFound": self.items_found,
            "errorCount": self.error_count,
            **self.details,
        }


@dataclass
class ExtractedLabel:
    """A candidate brand or category label aggregated over sampled products."""

    kind: str
    name: str
    normalized: str
    frequency: int = 0
    sources: list[str] = field(default_factory=list)
    confidence: float = 0.0
    examples: list[str] = field(default_factory=list)
    last_extracted: datetime | None = None
    id: int | None = None
    scope: str | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "kind": self.kind,
            "scope": self.scope,
            "name": self.name,
            "normalized": self.normalized,
            "frequency": self.frequency,
            "sources": list(self.sources),
            "confidence": round(self.confidence, 4),
            "examples": list(self.examples),
            "lastExtracted": self.last_extracted.isoformat() if self.last_extracted else None,
        }
