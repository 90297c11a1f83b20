"""SQLite-backed job queue for scraper jobs."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timedelta, UTC
from typing import TYPE_CHECKING

from .errors import ConflictError, NotFoundError, ValidationError
from .models import STORE_DEFAULTS, TERMINAL_STATUSES, JobStatus, JobType
from .utils import utcnow_iso

if TYPE_CHECKING:
    from .db import CatalogDatabase

logger = logging.getLogger(__name__)

# Jobs running longer than this are considered abandoned by a crashed worker
STALE_JOB_TIMEOUT_MINUTES = 30

CANCELLED_REASON = "cancelled"
STOPPED_REASON = "stopped"

# Claim the most urgent eligible waiting job whose store is enabled, not paused
# and below its concurrency limit. Job priority wins, then the store's rank
# (1 first), then age. Settings are joined in, so every dequeue sees the current
# values.
_CLAIM_SQL = """
    UPDATE scraper_jobs
    SET status = 'active', started_at = ?, worker_id = ?,
        attempts = attempts + 1, run_at = NULL
    WHERE id = (
        SELECT j.id FROM scraper_jobs j
        JOIN scraper_settings s ON s.store = j.store
        WHERE j.status = 'waiting'
        AND s.enabled = 1
        AND s.paused = 0
        AND (
            SELECT COUNT(*) FROM scraper_jobs a
            WHERE a.store = j.store AND a.status = 'active'
        ) < s.max_concurrency
        ORDER BY j.priority DESC, s.priority ASC, j.id ASC
        LIMIT 1
    )
    AND status = 'waiting'
    RETURNING *
"""


def _row_to_job(row: sqlite3.Row | None) -> dict | None:
    if row is None:
        return None
    job = dict(row)
    job["payload"] = json.loads(job["payload"]) if job.get("payload") else {}
    job["result"] = json.loads(job["result"]) if job.get("result") else None
    job["cancel_requested"] = bool(job.get("cancel_requested"))
    return job


def job_to_dict(job: dict) -> dict:
    """Convert a job row to the shape the admin UI consumes."""
    duration = job.get("duration_seconds")
    return {
        "id": job["id"],
        "type": job["job_type"],
        "target": job["store"],
        "status": job["status"],
        "attempts": job["attempts"],
        "maxAttempts": job["max_attempts"],
        "priority": job["priority"],
        "source": job["source"],
        "payload": job["payload"],
        "timestamp": job["created_at"],
        "createdAt": job["created_at"],
        "startedAt": job["started_at"],
        "completedAt": job["completed_at"],
        "runAt": job["run_at"],
        "failedReason": job["failed_reason"],
        "cancelRequested": job["cancel_requested"],
        "result": job["result"],
        "duration": round(duration * 1000) if duration is not None else None,
    }


class JobQueue:
    """SQLite-backed job queue with atomic claim operations."""

    def __init__(self, db: CatalogDatabase):
        self.db = db
        self.db_path = db.db_path

    def enqueue(
        self,
        store: str,
        job_type: str,
        payload: dict | None = None,
        priority: int = 0,
        source: str = "manual",
        delay_ms: int = 0,
    ) -> int:
        """
        Add a job to the queue.

        Args:
            store: Store the job targets
            job_type: One of the JobType values
            payload: Job-specific parameters (e.g. category id path)
            priority: Job priority (higher = more urgent)
            source: How the job was triggered (manual, scheduled, cli, discovery)
            delay_ms: Start the job in the delayed state for this long

        Returns:
            Job ID

        Raises:
            ValidationError: If the store or job type is unknown
        """
        if store not in STORE_DEFAULTS:
            raise ValidationError(f"Unknown store '{store}'")
        if job_type not in {t.value for t in JobType}:
            raise ValidationError(f"Unknown job type '{job_type}'")
        if delay_ms < 0:
            raise ValidationError("delay_ms must be >= 0")

        now = datetime.now(UTC)
        status = JobStatus.DELAYED.value if delay_ms else JobStatus.WAITING.value
        run_at = (now + timedelta(milliseconds=delay_ms)).isoformat() if delay_ms else None

        with self.db.transaction() as conn:
            settings = conn.execute(
                "SELECT retry_count FROM scraper_settings WHERE store = ?",
                (store,),
            ).fetchone()
            max_attempts = (settings["retry_count"] if settings else 0) + 1
            cursor = conn.execute(
                """
                INSERT INTO scraper_jobs (
                    store, job_type, status, payload, priority, source,
                    max_attempts, run_at, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    store,
                    job_type,
                    status,
                    json.dumps(payload or {}, ensure_ascii=False),
                    priority,
                    source,
                    max_attempts,
                    run_at,
                    now.isoformat(),
                ),
            )
            job_id = cursor.lastrowid

        logger.debug(f"Enqueued job {job_id}: {store}/{job_type} ({source})")
        return job_id

    def claim_next(self, worker_id: str) -> dict | None:
        """
        Atomically claim the next eligible job.

        Due delayed jobs are promoted to waiting first. The claim itself is a
        single compare-and-swap UPDATE inside an IMMEDIATE transaction, so two
        workers can never claim the same job and a store never exceeds its
        max_concurrency.

        Args:
            worker_id: Unique identifier for the worker claiming the job

        Returns:
            Job dict or None if no job is eligible
        """
        now = utcnow_iso()

        with self.db.transaction() as conn:
            conn.execute(
                """
                UPDATE scraper_jobs SET status = 'waiting', run_at = NULL
                WHERE status = 'delayed' AND run_at <= ?
                """,
                (now,),
            )
            rows = conn.execute(_CLAIM_SQL, (now, worker_id)).fetchall()

        return _row_to_job(rows[0]) if rows else None

    def complete(self, job_id: int, result: dict | None = None) -> bool:
        """
        Mark an active job as completed.

        A job whose cancellation was requested ends as failed "cancelled" instead,
        even when the scraper returned before reaching another checkpoint.

        Returns:
            False if the job was no longer active (stopped or reclaimed meanwhile)
            or was cancelled
        """
        now = datetime.now(UTC)
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT started_at, cancel_requested FROM scraper_jobs WHERE id = ? AND status = 'active'",
                (job_id,),
            ).fetchone()
            if not row:
                return False
            duration = _duration_since(row["started_at"], now)
            if row["cancel_requested"]:
                conn.execute(
                    """
                    UPDATE scraper_jobs
                    SET status = 'failed', failed_reason = ?, completed_at = ?,
                        duration_seconds = ?, run_at = NULL
                    WHERE id = ?
                    """,
                    (CANCELLED_REASON, now.isoformat(), duration, job_id),
                )
                logger.info(f"Job {job_id} finished after cancellation was requested, recorded as cancelled")
                return False
            conn.execute(
                """
                UPDATE scraper_jobs
                SET status = 'completed', completed_at = ?, result = ?,
                    duration_seconds = ?, failed_reason = NULL
                WHERE id = ? AND status = 'active'
                """,
                (
                    now.isoformat(),
                    json.dumps(result or {}, ensure_ascii=False),
                    duration,
                    job_id,
                ),
            )
        return True

    def fail(self, job_id: int, reason: str, retryable: bool = True) -> str:
        """
        Record a failed attempt of an active job.

        A retryable failure with attempts left moves the job to delayed (or
        straight to waiting when the store has no request delay). Otherwise the
        job becomes terminally failed with the reason recorded.

        Args:
            job_id: ID of the job
            reason: Failure message stored as failed_reason
            retryable: Whether the retry policy applies

        Returns:
            The job's resulting status

        Raises:
            NotFoundError: If the job does not exist
        """
        with self.db.transaction() as conn:
            row = conn.execute("SELECT * FROM scraper_jobs WHERE id = ?", (job_id,)).fetchone()
            if not row:
                raise NotFoundError(f"Job {job_id} not found")
            if row["status"] != JobStatus.ACTIVE.value:
                return row["status"]
            return self._fail_locked(conn, row, reason, retryable)

    def _fail_locked(
        self,
        conn: sqlite3.Connection,
        row: sqlite3.Row,
        reason: str,
        retryable: bool,
    ) -> str:
        now = datetime.now(UTC)
        duration = _duration_since(row["started_at"], now)

        if retryable and not row["cancel_requested"] and row["attempts"] < row["max_attempts"]:
            settings = conn.execute(
                "SELECT delay_between_requests FROM scraper_settings WHERE store = ?",
                (row["store"],),
            ).fetchone()
            delay_ms = settings["delay_between_requests"] if settings else 0
            status = JobStatus.DELAYED.value if delay_ms > 0 else JobStatus.WAITING.value
            run_at = (now + timedelta(milliseconds=delay_ms)).isoformat() if delay_ms > 0 else None
            conn.execute(
                """
                UPDATE scraper_jobs
                SET status = ?, run_at = ?, worker_id = NULL, failed_reason = ?,
                    duration_seconds = ?
                WHERE id = ?
                """,
                (status, run_at, reason, duration, row["id"]),
            )
            logger.info(
                f"Job {row['id']} attempt {row['attempts']}/{row['max_attempts']} failed, "
                f"retrying: {reason}"
            )
            return status

        conn.execute(
            """
            UPDATE scraper_jobs
            SET status = 'failed', failed_reason = ?, completed_at = ?,
                duration_seconds = ?, run_at = NULL
            WHERE id = ?
            """,
            (reason, now.isoformat(), duration, row["id"]),
        )
        logger.warning(f"Job {row['id']} failed permanently: {reason}")
        return JobStatus.FAILED.value

    def cancel(self, job_id: int) -> str:
        """
        Cancel a job.

        Waiting and delayed jobs fail immediately with reason "cancelled". Active
        jobs are flagged; the worker notices at its next checkpoint.

        Returns:
            The job's status after the call

        Raises:
            NotFoundError: If the job does not exist
            ConflictError: If the job already finished
        """
        now = utcnow_iso()
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT status FROM scraper_jobs WHERE id = ?", (job_id,)
            ).fetchone()
            if not row:
                raise NotFoundError(f"Job {job_id} not found")
            status = row["status"]
            if status in TERMINAL_STATUSES:
                raise ConflictError(f"Job {job_id} is already {status}")
            if status == JobStatus.ACTIVE.value:
                conn.execute(
                    "UPDATE scraper_jobs SET cancel_requested = 1 WHERE id = ?",
                    (job_id,),
                )
                return status
            conn.execute(
                """
                UPDATE scraper_jobs
                SET status = 'failed', failed_reason = ?, completed_at = ?,
                    cancel_requested = 1, run_at = NULL
                WHERE id = ?
                """,
                (CANCELLED_REASON, now, job_id),
            )
        return JobStatus.FAILED.value

    def stop_store(self, store: str) -> int:
        """
        Fail every non-terminal job of a store with reason "stopped".

        Active jobs are also flagged so their workers abort at the next checkpoint.

        Returns:
            Number of jobs stopped
        """
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE scraper_jobs
                SET status = 'failed', failed_reason = ?, completed_at = ?,
                    cancel_requested = 1, run_at = NULL
                WHERE store = ? AND status IN ('waiting', 'delayed', 'active')
                """,
                (STOPPED_REASON, utcnow_iso(), store),
            )
            return cursor.rowcount

    def abort_reason(self, job_id: int) -> str | None:
        """
        Reason a running job should stop, or None if it may continue.

        A job must stop when cancellation was requested or when it is no longer
        active (stopped, reclaimed, or purged).
        """
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT status, cancel_requested, failed_reason FROM scraper_jobs WHERE id = ?",
                (job_id,),
            ).fetchone()
        if row is None:
            return "removed"
        if row["status"] != JobStatus.ACTIVE.value:
            return row["failed_reason"] or f"no longer active ({row['status']})"
        if row["cancel_requested"]:
            return CANCELLED_REASON
        return None

    def should_abort(self, job_id: int) -> bool:
        """Check whether a running job has been cancelled or stopped."""
        return self.abort_reason(job_id) is not None

    def reclaim_stale_jobs(self, timeout_seconds: float | None = None) -> int:
        """
        Fail active jobs that exceeded the execution timeout.

        Each stale job counts as a failed attempt, so it is retried while attempts
        remain and becomes terminally failed otherwise. This releases the slot held
        by a worker that crashed.

        Returns:
            Number of jobs reclaimed
        """
        if timeout_seconds is None:
            timeout_seconds = STALE_JOB_TIMEOUT_MINUTES * 60
        cutoff = (datetime.now(UTC) - timedelta(seconds=timeout_seconds)).isoformat()

        with self.db.transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM scraper_jobs WHERE status = 'active' AND started_at < ?",
                (cutoff,),
            ).fetchall()
            for row in rows:
                self._fail_locked(
                    conn,
                    row,
                    f"Execution timeout after {int(timeout_seconds)}s (stale job)",
                    retryable=True,
                )
        return len(rows)

    def purge(self, statuses: tuple[str, ...] = TERMINAL_STATUSES) -> int:
        """
        Delete jobs in the given terminal states.

        Returns:
            Number of jobs deleted
        """
        invalid = [s for s in statuses if s not in TERMINAL_STATUSES]
        if invalid:
            raise ValidationError(f"Only terminal jobs can be purged, got {invalid}")
        placeholders = ", ".join("?" for _ in statuses)
        with self.db.connect() as conn:
            cursor = conn.execute(
                f"DELETE FROM scraper_jobs WHERE status IN ({placeholders})",
                tuple(statuses),
            )
            return cursor.rowcount

    def purge_expired(self, completed_ttl_hours: int = 24, failed_ttl_days: int = 7) -> int:
        """Delete completed and failed jobs older than their retention window."""
        now = datetime.now(UTC)
        completed_cutoff = (now - timedelta(hours=completed_ttl_hours)).isoformat()
        failed_cutoff = (now - timedelta(days=failed_ttl_days)).isoformat()
        with self.db.connect() as conn:
            cursor = conn.execute(
                """
                DELETE FROM scraper_jobs
                WHERE (status = 'completed' AND completed_at < ?)
                OR (status = 'failed' AND completed_at < ?)
                """,
                (completed_cutoff, failed_cutoff),
            )
            return cursor.rowcount

    def get_queue_status(self) -> dict:
        """
        Get current queue statistics.

        Returns:
            Dict with counts for each status
        """
        with self.db.connect() as conn:
            cursor = conn.execute(
                "SELECT status, COUNT(*) FROM scraper_jobs GROUP BY status"
            )
            stats = {status.value: 0 for status in JobStatus}
            for status, count in cursor.fetchall():
                if status in stats:
                    stats[status] = count
            return stats

    def get_store_counts(self) -> dict[str, dict[str, int]]:
        """Job counts per store and status."""
        counts: dict[str, dict[str, int]] = {}
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT store, status, COUNT(*) FROM scraper_jobs GROUP BY store, status"
            ).fetchall()
        for store, status, count in rows:
            counts.setdefault(store, {})[status] = count
        return counts

    def list_jobs(
        self,
        status: str | None = None,
        store: str | None = None,
        limit: int = 100,
    ) -> list[dict]:
        """
        List jobs, newest first.

        Args:
            status: Optional status filter
            store: Optional store filter
            limit: Maximum number of jobs returned
        """
        clauses = []
        params: list = []
        if status:
            if status not in {s.value for s in JobStatus}:
                raise ValidationError(f"Unknown job status '{status}'")
            clauses.append("status = ?")
            params.append(status)
        if store:
            clauses.append("store = ?")
            params.append(store)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self.db.connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM scraper_jobs {where} ORDER BY id DESC LIMIT ?",
                (*params, limit),
            ).fetchall()
        return [_row_to_job(row) for row in rows]

    def has_pending(self, store: str, job_type: str | None = None) -> bool:
        """Check if a store has a waiting, delayed or active job (of a type)."""
        query = """
            SELECT COUNT(*) FROM scraper_jobs
            WHERE store = ? AND status IN ('waiting', 'delayed', 'active')
        """
        params: tuple = (store,)
        if job_type:
            query += " AND job_type = ?"
            params = (store, job_type)
        with self.db.connect() as conn:
            return conn.execute(query, params).fetchone()[0] > 0

    def get_job(self, job_id: int) -> dict | None:
        """
        Get a specific job by ID.

        Args:
            job_id: ID of the job

        Returns:
            Job dict or None if not found
        """
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM scraper_jobs WHERE id = ?",
                (job_id,),
            ).fetchone()
            return _row_to_job(row)


def _duration_since(started_at: str | None, now: datetime) -> float | None:
    if not started_at:
        return None
    return (now - datetime.fromisoformat(started_at)).total_seconds()
