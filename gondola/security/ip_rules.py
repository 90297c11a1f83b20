"""Whitelist and blacklist rules managed from the admin panel."""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from typing import TYPE_CHECKING

from ..errors import ConflictError, NotFoundError, ValidationError
from ..utils import utcnow_iso
from .classification import normalize_ip_entry

if TYPE_CHECKING:
    from ..db import CatalogDatabase

logger = logging.getLogger(__name__)

RULE_TYPES = ("whitelist", "blacklist")
# The gate reads rules on every request
RULE_CACHE_SECONDS = 5.0


def rule_to_dict(row: sqlite3.Row) -> dict:
    return {
        "id": row["id"],
        "ip": row["ip"],
        "type": row["rule_type"],
        "reason": row["reason"],
        "createdBy": row["created_by"],
        "createdAt": row["created_at"],
    }


class IPRuleStore:
    def __init__(self, db: CatalogDatabase, cache_seconds: float = RULE_CACHE_SECONDS):
        self.db = db
        self.cache_seconds = cache_seconds
        self._lock = threading.Lock()
        self._cache: tuple[float, dict[str, list[str]]] | None = None

    def list_rules(self, rule_type: str | None = None) -> list[dict]:
        query = "SELECT * FROM ip_rules"
        params: tuple = ()
        if rule_type:
            if rule_type not in RULE_TYPES:
                raise ValidationError(f"Unknown rule type '{rule_type}'")
            query += " WHERE rule_type = ?"
            params = (rule_type,)
        with self.db.connect() as conn:
            rows = conn.execute(query + " ORDER BY created_at DESC, id DESC", params).fetchall()
        return [rule_to_dict(row) for row in rows]

    def add_rule(
        self,
        ip: str,
        rule_type: str,
        reason: str | None = None,
        created_by: str | None = None,
    ) -> dict:
        """
        Create a rule for an IP or CIDR block.

        Raises:
            ValidationError: Malformed IP or unknown rule type
            ConflictError: If the IP already has a rule
        """
        if rule_type not in RULE_TYPES:
            raise ValidationError(f"Unknown rule type '{rule_type}'")
        entry = normalize_ip_entry(ip)
        try:
            with self.db.connect() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO ip_rules (ip, rule_type, reason, created_by, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (entry, rule_type, reason, created_by, utcnow_iso()),
                )
                row = conn.execute("SELECT * FROM ip_rules WHERE id = ?", (cursor.lastrowid,)).fetchone()
        except sqlite3.IntegrityError as exc:
            raise ConflictError(f"A rule for {entry} already exists") from exc
        self.invalidate()
        logger.info(f"Added {rule_type} rule for {entry}")
        return rule_to_dict(row)

    def delete_rule(self, rule_id: int) -> None:
        with self.db.connect() as conn:
            cursor = conn.execute("DELETE FROM ip_rules WHERE id = ?", (rule_id,))
        if cursor.rowcount == 0:
            raise NotFoundError(f"IP rule {rule_id} not found")
        self.invalidate()

    def entries(self) -> dict[str, list[str]]:
        """Rule entries grouped by type, cached briefly."""
        now = time.monotonic()
        with self._lock:
            if self._cache and now - self._cache[0] < self.cache_seconds:
                return self._cache[1]
        grouped: dict[str, list[str]] = {t: [] for t in RULE_TYPES}
        with self.db.connect() as conn:
            for row in conn.execute("SELECT ip, rule_type FROM ip_rules"):
                grouped[row["rule_type"]].append(row["ip"])
        with self._lock:
            self._cache = (now, grouped)
        return grouped

    def invalidate(self) -> None:
        with self._lock:
            self._cache = None
