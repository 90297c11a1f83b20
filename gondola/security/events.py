"""Append-only security event log, metrics and alerting."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, UTC
from typing import TYPE_CHECKING, Any

import httpx

from ..errors import ValidationError
from ..models import VisitorState
from ..utils import utcnow_iso
from .classification import risk_level

if TYPE_CHECKING:
    from ..db import CatalogDatabase
    from .proxy_config import ImageProxyConfig

logger = logging.getLogger(__name__)

# Event types
EVENT_REQUEST = "request"
EVENT_BLOCKED = "blocked"
EVENT_HOTLINK = "hotlink_blocked"
EVENT_RATE_LIMITED = "rate_limited"
EVENT_AUTO_BLOCKED = "auto_blocked"
EVENT_HONEYPOT = "honeypot"
EVENT_TYPES = (
    EVENT_REQUEST,
    EVENT_BLOCKED,
    EVENT_HOTLINK,
    EVENT_RATE_LIMITED,
    EVENT_AUTO_BLOCKED,
    EVENT_HONEYPOT,
)

MAX_PAGE_SIZE = 200
TOP_THREATS_LIMIT = 10
WEBHOOK_TIMEOUT_SECONDS = 10.0


@dataclass
class SecurityEvent:
    ip: str
    visitor_state: str
    event_type: str
    risk_score: int
    path: str | None = None
    user_agent: str | None = None
    user_id: str | None = None
    ip_info: dict | None = None
    metadata: dict = field(default_factory=dict)
    created_at: str = field(default_factory=utcnow_iso)


def event_to_dict(row) -> dict:
    return {
        "id": row["id"],
        "ip": row["ip"],
        "visitorState": row["visitor_state"],
        "eventType": row["event_type"],
        "riskScore": row["risk_score"],
        "riskLevel": risk_level(row["risk_score"]),
        "ipInfo": json.loads(row["ip_info"]) if row["ip_info"] else None,
        "userId": row["user_id"],
        "path": row["path"],
        "userAgent": row["user_agent"],
        "metadata": json.loads(row["metadata"]) if row["metadata"] else {},
        "createdAt": row["created_at"],
    }


class SecurityLogStore:
    def __init__(self, db: CatalogDatabase):
        self.db = db

    def record(self, event: SecurityEvent) -> None:
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO security_logs (
                    ip, visitor_state, event_type, risk_score, ip_info,
                    user_id, path, user_agent, metadata, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.ip,
                    event.visitor_state,
                    event.event_type,
                    event.risk_score,
                    json.dumps(event.ip_info) if event.ip_info else None,
                    event.user_id,
                    event.path,
                    event.user_agent,
                    json.dumps(event.metadata),
                    event.created_at,
                ),
            )

    def list_logs(
        self,
        ip: str | None = None,
        visitor_state: str | None = None,
        event_type: str | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> dict:
        """
        Filtered, newest-first page of security events.

        Returns:
            Dict with `logs` and `pagination` {page, limit, total, pages}
        """
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be >= 1")
        if visitor_state and visitor_state not in {s.value for s in VisitorState}:
            raise ValidationError(f"Unknown visitor state '{visitor_state}'")
        limit = min(limit, MAX_PAGE_SIZE)

        where = []
        params: list[Any] = []
        if ip:
            where.append("ip = ?")
            params.append(ip)
        if visitor_state:
            where.append("visitor_state = ?")
            params.append(visitor_state)
        if event_type:
            where.append("event_type = ?")
            params.append(event_type)
        clause = f" WHERE {' AND '.join(where)}" if where else ""

        with self.db.connect() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM security_logs{clause}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM security_logs{clause} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                [*params, limit, (page - 1) * limit],
            ).fetchall()
        return {
            "logs": [event_to_dict(row) for row in rows],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit) if total else 0,
            },
        }

    def metrics(self, now: datetime | None = None) -> dict:
        """Dashboard metrics for today (UTC) and the last 24 hours."""
        now = now or datetime.now(UTC)
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0).isoformat()
        day_ago = (now - timedelta(hours=24)).isoformat()

        with self.db.connect() as conn:
            requests_today = conn.execute(
                "SELECT COUNT(*) FROM security_logs WHERE created_at >= ?", (midnight,)
            ).fetchone()[0]
            blocked_today = conn.execute(
                "SELECT COUNT(*) FROM security_logs WHERE created_at >= ? AND event_type != ?",
                (midnight, EVENT_REQUEST),
            ).fetchone()[0]
            state_rows = conn.execute(
                """
                SELECT visitor_state, COUNT(*) AS n FROM security_logs
                WHERE created_at >= ? GROUP BY visitor_state
                """,
                (midnight,),
            ).fetchall()
            threat_rows = conn.execute(
                """
                SELECT ip, COUNT(*) AS n, MAX(created_at) AS last_seen, MAX(risk_score) AS max_risk
                FROM security_logs
                WHERE created_at >= ? AND visitor_state != ?
                GROUP BY ip
                ORDER BY n DESC, max_risk DESC
                LIMIT ?
                """,
                (day_ago, VisitorState.NORMAL.value, TOP_THREATS_LIMIT),
            ).fetchall()
            trend_rows = conn.execute(
                """
                SELECT substr(created_at, 1, 13) AS hour,
                       COUNT(*) AS requests,
                       SUM(CASE WHEN event_type != ? THEN 1 ELSE 0 END) AS blocked
                FROM security_logs
                WHERE created_at >= ?
                GROUP BY hour
                """,
                (EVENT_REQUEST, day_ago),
            ).fetchall()

        distribution = {s.value: 0 for s in VisitorState}
        for row in state_rows:
            distribution[row["visitor_state"]] = row["n"]

        by_hour = {row["hour"]: row for row in trend_rows}
        trend = []
        start = now.replace(minute=0, second=0, microsecond=0) - timedelta(hours=23)
        for offset in range(24):
            hour = (start + timedelta(hours=offset)).isoformat()[:13]
            row = by_hour.get(hour)
            trend.append(
                {
                    "hour": f"{hour}:00",
                    "requests": row["requests"] if row else 0,
                    "blocked": row["blocked"] if row else 0,
                }
            )

        return {
            "requestsToday": requests_today,
            "blockedToday": blocked_today,
            "blockRate": round(blocked_today / requests_today * 100, 2) if requests_today else 0.0,
            "visitorStateDistribution": distribution,
            "topThreats": [
                {
                    "ip": row["ip"],
                    "count": row["n"],
                    "lastSeen": row["last_seen"],
                    "riskScore": row["max_risk"],
                    "riskLevel": risk_level(row["max_risk"]),
                }
                for row in threat_rows
            ],
            "hourlyTrend": trend,
        }

    def purge_older_than(self, days: int) -> int:
        """Delete events past the retention window. Returns the count deleted."""
        cutoff = (datetime.now(UTC) - timedelta(days=days)).isoformat()
        with self.db.connect() as conn:
            cursor = conn.execute("DELETE FROM security_logs WHERE created_at < ?", (cutoff,))
        if cursor.rowcount:
            logger.info(f"Purged {cursor.rowcount} security events older than {days} days")
        return cursor.rowcount

    def recent_activity(self, hours: int = 1) -> dict:
        cutoff = (datetime.now(UTC) - timedelta(hours=hours)).isoformat()
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n, COUNT(DISTINCT ip) AS ips FROM security_logs WHERE created_at >= ?",
                (cutoff,),
            ).fetchone()
        return {"requests": row["n"], "uniqueIps": row["ips"]}

    async def check_alerts(
        self,
        config: ImageProxyConfig,
        client: httpx.AsyncClient | None = None,
    ) -> dict | None:
        """
        Compare the last hour's traffic against the alert thresholds.

        Sends the summary to the configured webhook when a threshold is crossed.

        Returns:
            The alert summary, or None if no alert fired
        """
        if not config.alerts_enabled:
            return None
        activity = self.recent_activity(hours=1)
        reasons = []
        if activity["requests"] > config.alert_threshold_requests:
            reasons.append(f"{activity['requests']} requests in the last hour")
        if activity["uniqueIps"] > config.alert_threshold_unique_ips:
            reasons.append(f"{activity['uniqueIps']} unique IPs in the last hour")
        if not reasons:
            return None

        summary = {
            "type": "security_alert",
            "reasons": reasons,
            **activity,
            "thresholds": {
                "requests": config.alert_threshold_requests,
                "uniqueIps": config.alert_threshold_unique_ips,
            },
            "createdAt": utcnow_iso(),
        }
        logger.warning(f"Security alert: {'; '.join(reasons)}")

        if config.alert_webhook:
            owns_client = client is None
            client = client or httpx.AsyncClient(timeout=httpx.Timeout(WEBHOOK_TIMEOUT_SECONDS))
            try:
                response = await client.post(config.alert_webhook, json=summary)
                response.raise_for_status()
            except httpx.HTTPError as exc:
                logger.error(f"Alert webhook failed: {exc}")
            finally:
                if owns_client:
                    await client.aclose()
        return summary
