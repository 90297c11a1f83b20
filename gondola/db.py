"""SQLite database for scraper settings, catalog data and canonical entities."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .errors import ConflictError, NotFoundError, ValidationError
from .models import (
    STORE_DEFAULTS,
    CategoryNode,
    LabelKind,
    Product,
)
from .utils import slugify, utcnow_iso

DEFAULT_RETRY_COUNT = 3
DEFAULT_DELAY_MS = 1000
DEFAULT_UPDATE_FREQUENCY_HOURS = 24

# Canonical master categories seeded on request.
MASTER_CATEGORIES = [
    {
        "name": "Lácteos y Productos Frescos",
        "keywords": ["leche", "yogur", "queso", "manteca", "crema", "fresco"],
        "synonyms": ["lacteos", "frescos", "refrigerados"],
    },
    {
        "name": "Frutas y Verduras",
        "keywords": ["frutas", "verduras", "hortalizas", "manzana", "banana", "tomate"],
        "synonyms": ["fruteria", "verduleria"],
    },
    {
        "name": "Carnes y Pescados",
        "keywords": ["carne", "pollo", "pescado", "carniceria", "pescaderia"],
        "synonyms": ["carniceria", "pescaderia", "mariscos"],
    },
    {
        "name": "Panadería y Repostería",
        "keywords": ["pan", "facturas", "reposteria", "medialuna", "pan dulce"],
        "synonyms": ["panaderia", "reposteria", "bakery"],
    },
    {
        "name": "Bebidas y Licores",
        "keywords": ["bebidas", "agua", "jugo", "gaseosa", "cerveza", "vino"],
        "synonyms": ["bebidas", "licores", "alcohol"],
    },
    {
        "name": "Limpieza y Hogar",
        "keywords": ["limpieza", "detergente", "lavandina", "jabon", "hogar"],
        "synonyms": ["limpieza", "lavanderia", "limpiador"],
    },
    {
        "name": "Perfumería y Belleza",
        "keywords": ["perfumeria", "higiene", "shampoo", "crema", "cosmeticos"],
        "synonyms": ["belleza", "perfumeria", "cosmeticos"],
    },
    {
        "name": "Mascotas",
        "keywords": ["mascotas", "perro", "gato", "alimento mascota"],
        "synonyms": ["pet", "pets", "animales"],
    },
    {
        "name": "Bebé y Infancia",
        "keywords": ["bebe", "pañal", "biberon", "leche infantil", "infancia"],
        "synonyms": ["bebe", "baby", "niños"],
    },
]

# Settings a caller may change, with their validators.
_SETTING_RULES = {
    "enabled": (bool, None, None),
    "max_concurrency": (int, 1, None),
    "retry_count": (int, 0, 10),
    "delay_between_requests": (int, 0, None),
    "product_update_frequency": (int, 1, None),
}


class CatalogDatabase:
    """SQLite database holding queue state, scraped catalog data and taxonomy."""

    def __init__(self, db_path: Path | None = None):
        if db_path is None:
            from .config import get_settings

            db_path = get_settings().db_path
        self.db_path = Path(db_path)
        self._init_db()

    def _open(self, isolation_level: str | None = "DEFERRED") -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30, isolation_level=isolation_level)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Short-lived connection; commits on success and rolls back on error."""
        conn = self._open()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Connection holding the database write lock for the whole block."""
        conn = self._open(isolation_level=None)
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def _init_db(self):
        """Initialize the database schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self.connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")

            # Per-store scraper settings, read fresh on every dequeue
            conn.execute("""
                CREATE TABLE IF NOT EXISTS scraper_settings (
                    store TEXT PRIMARY KEY,
                    enabled INTEGER NOT NULL DEFAULT 1,
                    paused INTEGER NOT NULL DEFAULT 0,
                    max_concurrency INTEGER NOT NULL DEFAULT 1 CHECK (max_concurrency >= 1),
                    retry_count INTEGER NOT NULL DEFAULT 3 CHECK (retry_count BETWEEN 0 AND 10),
                    delay_between_requests INTEGER NOT NULL DEFAULT 1000,
                    product_update_frequency INTEGER NOT NULL DEFAULT 24,
                    priority INTEGER NOT NULL DEFAULT 0,
                    last_run TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS scraper_jobs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    store TEXT NOT NULL,
                    job_type TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'waiting',
                    payload TEXT,
                    priority INTEGER NOT NULL DEFAULT 0,
                    source TEXT NOT NULL DEFAULT 'manual',
                    attempts INTEGER NOT NULL DEFAULT 0,
                    max_attempts INTEGER NOT NULL DEFAULT 1,
                    run_at TEXT,
                    worker_id TEXT,
                    cancel_requested INTEGER NOT NULL DEFAULT 0,
                    failed_reason TEXT,
                    result TEXT,
                    created_at TEXT NOT NULL,
                    started_at TEXT,
                    completed_at TEXT,
                    duration_seconds REAL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_status_priority
                ON scraper_jobs (status, priority DESC, id)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_store_status
                ON scraper_jobs (store, status)
            """)

            # Ring buffer of job log lines per store
            conn.execute("""
                CREATE TABLE IF NOT EXISTS scraper_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    store TEXT NOT NULL,
                    job_id INTEGER,
                    timestamp TEXT NOT NULL,
                    level TEXT NOT NULL,
                    message TEXT NOT NULL,
                    details TEXT
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_scraper_logs_store
                ON scraper_logs (store, id)
            """)

            # Store taxonomy discovered by crawl jobs
            conn.execute("""
                CREATE TABLE IF NOT EXISTS store_categories (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    store TEXT NOT NULL,
                    external_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    url TEXT,
                    id_path TEXT NOT NULL,
                    parent_external_id TEXT,
                    depth INTEGER NOT NULL DEFAULT 0,
                    is_leaf INTEGER NOT NULL DEFAULT 1,
                    discovered_at TEXT NOT NULL,
                    UNIQUE(store, external_id)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS products (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    store TEXT NOT NULL,
                    external_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    store_brand TEXT,
                    category_path TEXT,
                    price REAL,
                    list_price REAL,
                    currency TEXT,
                    url TEXT,
                    ean TEXT,
                    image_url TEXT,
                    available INTEGER NOT NULL DEFAULT 1,
                    first_seen TEXT NOT NULL,
                    last_seen TEXT NOT NULL,
                    UNIQUE(store, external_id)
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_products_store_seen
                ON products (store, last_seen)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS price_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    product_id INTEGER NOT NULL,
                    price REAL,
                    list_price REAL,
                    scraped_at TEXT NOT NULL,
                    FOREIGN KEY (product_id) REFERENCES products(id) ON DELETE CASCADE
                )
            """)

            # Canonical entities
            conn.execute("""
                CREATE TABLE IF NOT EXISTS brands (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    slug TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS categories (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    slug TEXT NOT NULL UNIQUE,
                    parent_id INTEGER,
                    keywords TEXT NOT NULL DEFAULT '[]',
                    synonyms TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT NOT NULL
                )
            """)

            # Extraction output, replaced per (kind, scope) on each run
            conn.execute("""
                CREATE TABLE IF NOT EXISTS extracted_labels (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    kind TEXT NOT NULL,
                    scope TEXT NOT NULL,
                    normalized TEXT NOT NULL,
                    name TEXT NOT NULL,
                    frequency INTEGER NOT NULL,
                    sources TEXT NOT NULL,
                    confidence REAL NOT NULL,
                    examples TEXT NOT NULL,
                    last_extracted TEXT NOT NULL,
                    UNIQUE(kind, scope, normalized)
                )
            """)

            # At most one mapping per (kind, label, store)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS mappings (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    kind TEXT NOT NULL,
                    extracted_label TEXT NOT NULL,
                    normalized_label TEXT NOT NULL,
                    entity_id INTEGER,
                    confidence REAL NOT NULL,
                    method TEXT NOT NULL,
                    store_name TEXT NOT NULL,
                    mapped_at TEXT NOT NULL,
                    validated INTEGER NOT NULL DEFAULT 0,
                    UNIQUE(kind, normalized_label, store_name)
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_mappings_entity
                ON mappings (kind, entity_id)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS security_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    ip TEXT NOT NULL,
                    visitor_state TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    risk_score INTEGER NOT NULL,
                    ip_info TEXT,
                    user_id TEXT,
                    path TEXT,
                    user_agent TEXT,
                    metadata TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_security_logs_created
                ON security_logs (created_at)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_security_logs_ip
                ON security_logs (ip, created_at)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS ip_rules (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    ip TEXT NOT NULL UNIQUE,
                    rule_type TEXT NOT NULL CHECK (rule_type IN ('whitelist', 'blacklist')),
                    reason TEXT,
                    created_by TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            # Singleton row, the CHECK keeps it unique
            conn.execute("""
                CREATE TABLE IF NOT EXISTS image_proxy_config (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS admin_sessions (
                    token TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                )
            """)

            self._seed_store_settings(conn)

    def _seed_store_settings(self, conn: sqlite3.Connection) -> None:
        now = utcnow_iso()
        for store, defaults in STORE_DEFAULTS.items():
            conn.execute(
                """
                INSERT OR IGNORE INTO scraper_settings (
                    store, max_concurrency, retry_count, delay_between_requests,
                    product_update_frequency, priority, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    store,
                    defaults.max_concurrency,
                    DEFAULT_RETRY_COUNT,
                    DEFAULT_DELAY_MS,
                    DEFAULT_UPDATE_FREQUENCY_HOURS,
                    defaults.priority,
                    now,
                    now,
                ),
            )

    # ── Scraper settings ─────────────────────────────────────────────────────

    def get_scraper_settings(self, store: str) -> dict:
        """
        Get the current settings for a store.

        Raises:
            NotFoundError: If the store is unknown
        """
        with self.connect() as conn:
            row = conn.execute(
                "SELECT * FROM scraper_settings WHERE store = ?", (store,)
            ).fetchone()
        if not row:
            raise NotFoundError(f"Unknown store '{store}'")
        return _settings_row(row)

    def list_scraper_settings(self) -> list[dict]:
        """Get settings for all stores, ordered by store priority."""
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM scraper_settings ORDER BY priority, store"
            ).fetchall()
        return [_settings_row(row) for row in rows]

    def update_scraper_settings(self, store: str, **changes) -> dict:
        """
        Apply operator changes to a store's settings.

        Args:
            store: Store name
            **changes: Any of enabled, max_concurrency, retry_count,
                delay_between_requests, product_update_frequency

        Returns:
            The updated settings

        Raises:
            ValidationError: On unknown keys or out-of-range values
            NotFoundError: If the store is unknown
        """
        clean: dict[str, int] = {}
        for key, value in changes.items():
            if value is None:
                continue
            if key not in _SETTING_RULES:
                raise ValidationError(f"Unknown setting '{key}'")
            kind, low, high = _SETTING_RULES[key]
            if kind is bool:
                if not isinstance(value, bool):
                    raise ValidationError(f"'{key}' must be a boolean")
                clean[key] = int(value)
                continue
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError(f"'{key}' must be an integer")
            if low is not None and value < low:
                raise ValidationError(f"'{key}' must be >= {low}")
            if high is not None and value > high:
                raise ValidationError(f"'{key}' must be <= {high}")
            clean[key] = value

        self.get_scraper_settings(store)
        if clean:
            assignments = ", ".join(f"{key} = ?" for key in clean)
            with self.connect() as conn:
                conn.execute(
                    f"UPDATE scraper_settings SET {assignments}, updated_at = ? WHERE store = ?",
                    (*clean.values(), utcnow_iso(), store),
                )
        return self.get_scraper_settings(store)

    def set_store_paused(self, store: str, paused: bool) -> dict:
        """Pause or resume dequeuing for a store."""
        self.get_scraper_settings(store)
        with self.connect() as conn:
            conn.execute(
                "UPDATE scraper_settings SET paused = ?, updated_at = ? WHERE store = ?",
                (int(paused), utcnow_iso(), store),
            )
        return self.get_scraper_settings(store)

    def touch_last_run(self, store: str, when: str | None = None) -> None:
        """Record a successful run for a store."""
        with self.connect() as conn:
            conn.execute(
                "UPDATE scraper_settings SET last_run = ? WHERE store = ?",
                (when or utcnow_iso(), store),
            )

    # ── Store categories ─────────────────────────────────────────────────────

    def save_store_categories(self, nodes: list[CategoryNode]) -> int:
        """Upsert discovered category nodes. Returns the number of nodes written."""
        if not nodes:
            return 0
        now = utcnow_iso()
        with self.connect() as conn:
            for node in nodes:
                conn.execute(
                    """
                    INSERT INTO store_categories (
                        store, external_id, name, url, id_path, parent_external_id,
                        depth, is_leaf, discovered_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(store, external_id) DO UPDATE SET
                        name = excluded.name,
                        url = excluded.url,
                        id_path = excluded.id_path,
                        parent_external_id = excluded.parent_external_id,
                        depth = excluded.depth,
                        is_leaf = excluded.is_leaf,
                        discovered_at = excluded.discovered_at
                    """,
                    (
                        node.store,
                        node.external_id,
                        node.name,
                        node.url,
                        node.id_path,
                        node.parent_external_id,
                        node.depth,
                        int(node.is_leaf),
                        now,
                    ),
                )
        return len(nodes)

    def list_store_categories(self, store: str, leaves_only: bool = False) -> list[dict]:
        """Get discovered categories for a store, ordered by id path."""
        query = "SELECT * FROM store_categories WHERE store = ?"
        if leaves_only:
            query += " AND is_leaf = 1"
        with self.connect() as conn:
            rows = conn.execute(query + " ORDER BY id_path", (store,)).fetchall()
        return [dict(row) for row in rows]

    # ── Products ─────────────────────────────────────────────────────────────

    def save_product(self, product: Product) -> bool:
        """
        Upsert a scraped product and append to its price history on change.

        Returns:
            True if the product was new
        """
        now = utcnow_iso()
        category_path = json.dumps(product.category_path, ensure_ascii=False)
        with self.connect() as conn:
            existing = conn.execute(
                "SELECT id, price, list_price FROM products WHERE store = ? AND external_id = ?",
                (product.store, product.external_id),
            ).fetchone()

            if existing is None:
                cursor = conn.execute(
                    """
                    INSERT INTO products (
                        store, external_id, title, store_brand, category_path, price,
                        list_price, currency, url, ean, image_url, available,
                        first_seen, last_seen
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        product.store,
                        product.external_id,
                        product.title,
                        product.brand,
                        category_path,
                        product.price,
                        product.list_price,
                        product.currency,
                        product.url,
                        product.ean,
                        product.image_url,
                        int(product.available),
                        now,
                        now,
                    ),
                )
                product_id = cursor.lastrowid
                price_changed = True
            else:
                product_id = existing["id"]
                price_changed = (
                    existing["price"] != product.price
                    or existing["list_price"] != product.list_price
                )
                conn.execute(
                    """
                    UPDATE products
                    SET title = ?, store_brand = ?, category_path = ?, price = ?,
                        list_price = ?, currency = ?, url = ?, ean = ?,
                        image_url = COALESCE(?, image_url), available = ?, last_seen = ?
                    WHERE id = ?
                    """,
                    (
                        product.title,
                        product.brand,
                        category_path,
                        product.price,
                        product.list_price,
                        product.currency,
                        product.url,
                        product.ean,
                        product.image_url,
                        int(product.available),
                        now,
                        product_id,
                    ),
                )

            if price_changed and product.price is not None:
                conn.execute(
                    """
                    INSERT INTO price_history (product_id, price, list_price, scraped_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (product_id, product.price, product.list_price, now),
                )

        return existing is None

    def get_product(self, product_id: int) -> dict:
        """Get a product by id, raising NotFoundError if absent."""
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM products WHERE id = ?", (product_id,)).fetchone()
        if not row:
            raise NotFoundError(f"Product {product_id} not found")
        product = dict(row)
        product["category_path"] = json.loads(product["category_path"] or "[]")
        return product

    def get_price_history(self, product_id: int) -> list[dict]:
        """Get the price history of a product, oldest first."""
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT price, list_price, scraped_at FROM price_history WHERE product_id = ? ORDER BY id",
                (product_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    def count_products(self, store: str | None = None) -> int:
        """Count products, optionally for one store."""
        with self.connect() as conn:
            if store:
                row = conn.execute("SELECT COUNT(*) FROM products WHERE store = ?", (store,)).fetchone()
            else:
                row = conn.execute("SELECT COUNT(*) FROM products").fetchone()
        return row[0]

    def sample_products(self, store: str, limit: int) -> list[dict]:
        """Most recently seen products of a store, for label extraction."""
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT id, title, store_brand, category_path FROM products
                WHERE store = ?
                ORDER BY last_seen DESC, id DESC
                LIMIT ?
                """,
                (store, limit),
            ).fetchall()
        samples = []
        for row in rows:
            item = dict(row)
            item["category_path"] = json.loads(item["category_path"] or "[]")
            samples.append(item)
        return samples

    def stores_with_products(self) -> list[str]:
        """Stores that have at least one scraped product."""
        with self.connect() as conn:
            rows = conn.execute("SELECT DISTINCT store FROM products ORDER BY store").fetchall()
        return [row[0] for row in rows]

    # ── Canonical entities ───────────────────────────────────────────────────

    def create_brand(self, name: str) -> dict:
        """Create a canonical brand. Duplicate slugs raise ConflictError."""
        return self._create_entity(LabelKind.BRAND.value, name)

    def create_category(
        self,
        name: str,
        keywords: list[str] | None = None,
        synonyms: list[str] | None = None,
        parent_id: int | None = None,
    ) -> dict:
        """Create a canonical category. Duplicate slugs raise ConflictError."""
        return self._create_entity(
            LabelKind.CATEGORY.value,
            name,
            keywords=keywords or [],
            synonyms=synonyms or [],
            parent_id=parent_id,
        )

    def _create_entity(self, kind: str, name: str, **extra) -> dict:
        name = (name or "").strip()
        slug = slugify(name)
        if not slug:
            raise ValidationError("Name is required")
        now = utcnow_iso()
        try:
            with self.connect() as conn:
                if kind == LabelKind.BRAND.value:
                    cursor = conn.execute(
                        "INSERT INTO brands (name, slug, created_at) VALUES (?, ?, ?)",
                        (name, slug, now),
                    )
                else:
                    cursor = conn.execute(
                        """
                        INSERT INTO categories (name, slug, parent_id, keywords, synonyms, created_at)
                        VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        (
                            name,
                            slug,
                            extra.get("parent_id"),
                            json.dumps(extra.get("keywords", []), ensure_ascii=False),
                            json.dumps(extra.get("synonyms", []), ensure_ascii=False),
                            now,
                        ),
                    )
                entity_id = cursor.lastrowid
        except sqlite3.IntegrityError as exc:
            raise ConflictError(f"A {kind} named '{name}' already exists") from exc
        return self.get_entity(kind, entity_id)

    def seed_master_categories(self) -> int:
        """Create the default master categories that are missing. Returns the count created."""
        created = 0
        for category in MASTER_CATEGORIES:
            try:
                self.create_category(
                    category["name"],
                    keywords=category["keywords"],
                    synonyms=category["synonyms"],
                )
                created += 1
            except ConflictError:
                continue
        return created

    def get_entity(self, kind: str, entity_id: int) -> dict:
        """
        Get a canonical brand or category.

        Returns:
            Entity dict with a `names` list (name plus synonyms) used for matching

        Raises:
            NotFoundError: If no such entity exists
        """
        table = _entity_table(kind)
        with self.connect() as conn:
            row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (entity_id,)).fetchone()
        if not row:
            raise NotFoundError(f"{kind.title()} {entity_id} not found")
        return _entity_row(kind, row)

    def list_entities(self, kind: str) -> list[dict]:
        """Get all canonical entities of a kind, ordered by name."""
        table = _entity_table(kind)
        with self.connect() as conn:
            rows = conn.execute(f"SELECT * FROM {table} ORDER BY name").fetchall()
        return [_entity_row(kind, row) for row in rows]

    def delete_entity(self, kind: str, entity_id: int) -> None:
        """Delete a canonical entity together with the mappings pointing at it."""
        table = _entity_table(kind)
        with self.connect() as conn:
            cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", (entity_id,))
            if cursor.rowcount == 0:
                raise NotFoundError(f"{kind.title()} {entity_id} not found")
            conn.execute(
                "DELETE FROM mappings WHERE kind = ? AND entity_id = ?",
                (kind, entity_id),
            )


def _entity_table(kind: str) -> str:
    if kind == LabelKind.BRAND.value:
        return "brands"
    if kind == LabelKind.CATEGORY.value:
        return "categories"
    raise ValidationError(f"Unknown kind '{kind}'")


def _entity_row(kind: str, row: sqlite3.Row) -> dict:
    entity = dict(row)
    entity["kind"] = kind
    synonyms: list[str] = []
    if kind == LabelKind.CATEGORY.value:
        entity["keywords"] = json.loads(entity["keywords"] or "[]")
        synonyms = json.loads(entity["synonyms"] or "[]")
        entity["synonyms"] = synonyms
    entity["names"] = [entity["name"], *synonyms]
    return entity


def _settings_row(row: sqlite3.Row) -> dict:
    settings = dict(row)
    settings["enabled"] = bool(settings["enabled"])
    settings["paused"] = bool(settings["paused"])
    return settings
