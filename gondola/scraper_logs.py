"""Per-store ring buffer of structured scraper log lines."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from .errors import ValidationError
from .models import LogLevel
from .utils import utcnow_iso

if TYPE_CHECKING:
    from .db import CatalogDatabase

logger = logging.getLogger(__name__)

_PY_LEVELS = {
    LogLevel.DEBUG.value: logging.DEBUG,
    LogLevel.INFO.value: logging.INFO,
    LogLevel.WARN.value: logging.WARNING,
    LogLevel.ERROR.value: logging.ERROR,
}


class ScraperLogBuffer:
    """Keeps the last `size` log lines per store; older lines are trimmed on write."""

    def __init__(self, db: CatalogDatabase, size: int = 500):
        self.db = db
        self.size = size

    def append(
        self,
        store: str,
        level: str,
        message: str,
        details: dict | None = None,
        job_id: int | None = None,
    ) -> None:
        """Append a log line for a store and mirror it to the Python logger."""
        if level not in _PY_LEVELS:
            raise ValidationError(f"Unknown log level '{level}'")

        logger.log(_PY_LEVELS[level], f"[{store}] {message}")

        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO scraper_logs (store, job_id, timestamp, level, message, details)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    store,
                    job_id,
                    utcnow_iso(),
                    level,
                    message,
                    json.dumps(details, ensure_ascii=False, default=str) if details else None,
                ),
            )
            conn.execute(
                """
                DELETE FROM scraper_logs
                WHERE store = ? AND id <= (
                    SELECT id FROM scraper_logs WHERE store = ?
                    ORDER BY id DESC LIMIT 1 OFFSET ?
                )
                """,
                (store, store, self.size),
            )

    def tail(self, store: str, limit: int = 100) -> list[dict]:
        """Most recent log lines for a store, oldest first."""
        with self.db.connect() as conn:
            rows = conn.execute(
                """
                SELECT id, job_id, timestamp, level, message, details FROM scraper_logs
                WHERE store = ?
                ORDER BY id DESC LIMIT ?
                """,
                (store, limit),
            ).fetchall()

        lines = []
        for row in reversed(rows):
            lines.append(
                {
                    "id": row["id"],
                    "jobId": row["job_id"],
                    "timestamp": row["timestamp"],
                    "level": row["level"],
                    "message": row["message"],
                    "details": json.loads(row["details"]) if row["details"] else None,
                }
            )
        return lines

    def count_errors(self, store: str) -> int:
        """Number of error lines currently buffered for a store."""
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM scraper_logs WHERE store = ? AND level = 'error'",
                (store,),
            ).fetchone()
        return row[0]

    def clear(self, store: str) -> int:
        """Drop all buffered lines of a store."""
        with self.db.connect() as conn:
            return conn.execute("DELETE FROM scraper_logs WHERE store = ?", (store,)).rowcount
