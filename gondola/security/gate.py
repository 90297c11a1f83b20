"""Per-request security gate: IP lists, hotlink protection, rate limits and auto-blocking."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable

from ..errors import ConflictError, ValidationError
from ..models import VisitorState
from .classification import classify_user_agent, risk_score
from .counters import WINDOWS, FixedWindowCounter
from .events import (
    EVENT_AUTO_BLOCKED,
    EVENT_BLOCKED,
    EVENT_HONEYPOT,
    EVENT_HOTLINK,
    EVENT_RATE_LIMITED,
    EVENT_REQUEST,
    SecurityEvent,
    SecurityLogStore,
)
from .ip_rules import IPRuleStore
from .proxy_config import ProxyConfigRepository

if TYPE_CHECKING:
    from ..db import CatalogDatabase
    from .ip_info import IpInfoClient
    from .proxy_config import ImageProxyConfig

logger = logging.getLogger(__name__)

# Paths only scanners ask for; a hit blacklists the IP
HONEYPOT_PATHS = (
    "/wp-admin",
    "/wp-login.php",
    "/.env",
    "/phpmyadmin",
    "/mysql-admin",
    "/config.php",
    "/setup.php",
    "/.git/config",
    "/composer.json",
    "/package.json",
    "/xmlrpc.php",
    "/backup.sql",
    "/database.sql",
    "/dump.sql",
)
HONEYPOT_CREATED_BY = "honeypot"


def is_honeypot_path(path: str | None) -> bool:
    if not path:
        return False
    lowered = path.lower()
    return any(trap in lowered for trap in HONEYPOT_PATHS)


@dataclass
class GateDecision:
    allowed: bool
    visitor_state: str
    event_type: str
    risk_score: int
    status_code: int = 200
    reason: str | None = None
    retry_after: int | None = None
    counts: dict[str, int] = field(default_factory=dict)


class SecurityGate:
    """
    Decides whether a request may proceed.

    Checks run in order and the first match decides:

    1. Whitelisted IP (config or rule): allowed, nothing else applies
    2. Honeypot path: the IP is blacklisted and rejected (403)
    3. Blacklisted IP: rejected (403)
    4. Image requests with a disallowed referer: rejected (403)
    5. Per-IP minute, hour and day counters over their limit: rejected (429),
       or auto-blocked (403) once the minute count passes the auto-block threshold
    """

    def __init__(
        self,
        db: CatalogDatabase,
        config_repo: ProxyConfigRepository | None = None,
        rules: IPRuleStore | None = None,
        events: SecurityLogStore | None = None,
        counter: FixedWindowCounter | None = None,
        ip_info: IpInfoClient | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config_repo = config_repo or ProxyConfigRepository(db)
        self.rules = rules or IPRuleStore(db)
        self.events = events or SecurityLogStore(db)
        self.counter = counter or FixedWindowCounter(clock=clock)
        self.ip_info = ip_info
        self._clock = clock

    def check(
        self,
        ip: str,
        user_agent: str | None = None,
        referer: str | None = None,
        path: str | None = None,
        user_id: str | None = None,
        is_image: bool = False,
    ) -> GateDecision:
        """
        Run the check sequence for one request and log the decision.

        Args:
            ip: Client IP
            user_agent: User-Agent header
            referer: Referer header
            path: Request path, stored with the event
            user_id: Authenticated user, if any
            is_image: Whether hotlink protection applies

        Returns:
            GateDecision; rejected decisions carry the HTTP status to answer with
        """
        config = self.config_repo.get()
        ua_state = classify_user_agent(user_agent)
        if not config.is_active:
            return GateDecision(True, ua_state, EVENT_REQUEST, 0)

        rule_entries = self.rules.entries()
        whitelist = rule_entries.get("whitelist", [])
        blacklist = rule_entries.get("blacklist", [])

        if config.is_ip_whitelisted(ip, whitelist):
            decision = GateDecision(True, ua_state, EVENT_REQUEST, risk_score(ua_state))
        elif is_honeypot_path(path):
            decision = self._trap(ip, path)
        elif config.is_ip_blocked(ip, extra_blacklist=blacklist):
            decision = GateDecision(
                False,
                VisitorState.IP_BLOCKED.value,
                EVENT_BLOCKED,
                risk_score(VisitorState.IP_BLOCKED.value),
                status_code=403,
                reason="IP blocked",
            )
        elif is_image and not config.is_referer_allowed(referer):
            decision = GateDecision(
                False,
                VisitorState.SUSPICIOUS.value,
                EVENT_HOTLINK,
                risk_score(VisitorState.SUSPICIOUS.value),
                status_code=403,
                reason="Hotlinking not allowed",
            )
        elif config.rate_limit_enabled:
            decision = self._check_rate(ip, ua_state, config)
        else:
            decision = GateDecision(True, ua_state, EVENT_REQUEST, risk_score(ua_state))

        if config.tracking_enabled or not decision.allowed:
            self._record(ip, decision, user_agent, path, user_id, referer)
        return decision

    def _trap(self, ip: str, path: str) -> GateDecision:
        try:
            self.rules.add_rule(
                ip,
                "blacklist",
                reason=f"Requested trap path {path}",
                created_by=HONEYPOT_CREATED_BY,
            )
        except ConflictError:
            logger.debug(f"{ip} already has a rule")
        except ValidationError:
            logger.warning(f"Cannot blacklist unparseable client address {ip!r}")
        return GateDecision(
            False,
            VisitorState.IP_BLOCKED.value,
            EVENT_HONEYPOT,
            risk_score(VisitorState.IP_BLOCKED.value),
            status_code=403,
            reason="Access denied",
        )

    def _check_rate(self, ip: str, ua_state: str, config: ImageProxyConfig) -> GateDecision:
        counts = self.counter.increment(ip)
        per_minute = config.rate_limit_per_minute
        risk_args = (counts["minute"], per_minute)

        if config.auto_block_enabled and counts["minute"] > config.auto_block_threshold:
            self.config_repo.block_ip(ip, reason=f"{counts['minute']} requests in one minute")
            self.rules.invalidate()
            return GateDecision(
                False,
                VisitorState.IP_BLOCKED.value,
                EVENT_AUTO_BLOCKED,
                risk_score(VisitorState.IP_BLOCKED.value),
                status_code=403,
                reason="IP blocked after exceeding the auto-block threshold",
                counts=counts,
            )

        exceeded = None
        if counts["day"] > config.rate_limit_per_day:
            exceeded = "day"
        elif counts["hour"] > config.rate_limit_per_hour:
            exceeded = "hour"
        elif counts["minute"] > per_minute:
            exceeded = "minute"

        if exceeded is None:
            return GateDecision(True, ua_state, EVENT_REQUEST, risk_score(ua_state, *risk_args), counts=counts)

        state = VisitorState.SUSPICIOUS.value if exceeded == "minute" else VisitorState.MALICIOUS.value
        length = WINDOWS[exceeded]
        retry_after = max(1, int(length - self._clock() % length))
        return GateDecision(
            False,
            state,
            EVENT_RATE_LIMITED,
            risk_score(state, *risk_args),
            status_code=429,
            reason=f"Rate limit per {exceeded} exceeded",
            retry_after=retry_after,
            counts=counts,
        )

    def _record(
        self,
        ip: str,
        decision: GateDecision,
        user_agent: str | None,
        path: str | None,
        user_id: str | None,
        referer: str | None,
    ) -> None:
        ip_info = None
        if self.ip_info is not None and decision.visitor_state != VisitorState.NORMAL.value:
            ip_info = self.ip_info.lookup(ip)

        metadata: dict = {}
        if decision.reason:
            metadata["reason"] = decision.reason
        if decision.counts:
            metadata["counts"] = decision.counts
        if referer:
            metadata["referer"] = referer

        self.events.record(
            SecurityEvent(
                ip=ip,
                visitor_state=decision.visitor_state,
                event_type=decision.event_type,
                risk_score=decision.risk_score,
                path=path,
                user_agent=user_agent,
                user_id=user_id,
                ip_info=ip_info,
                metadata=metadata,
            )
        )
        if decision.event_type in (EVENT_AUTO_BLOCKED, EVENT_HONEYPOT):
            logger.warning(f"Auto-blocked {ip}: {decision.reason}")
        elif not decision.allowed:
            logger.info(f"Rejected {ip} ({decision.visitor_state}): {decision.reason}")
