"""Visitor classification, risk scoring and IP matching helpers."""

from __future__ import annotations

import ipaddress
import re
from typing import Iterable

from ..errors import ValidationError
from ..models import VisitorState

BOT_RE = re.compile(r"bot|crawl|slurp|spider|facebookexternalhit|whatsapp", re.IGNORECASE)
SCRAPER_RE = re.compile(
    r"curl|wget|python-requests|python-urllib|httpx|aiohttp|scrapy|headless|phantomjs|"
    r"puppeteer|playwright|selenium|go-http-client|java/|libwww|okhttp",
    re.IGNORECASE,
)

RISK_BASE = {
    VisitorState.NORMAL.value: 0,
    VisitorState.BOT.value: 20,
    VisitorState.SCRAPER.value: 45,
    VisitorState.SUSPICIOUS.value: 60,
    VisitorState.MALICIOUS.value: 85,
    VisitorState.IP_BLOCKED.value: 100,
}
# Points added at full minute-window utilization
UTILIZATION_POINTS = 15

RISK_LEVELS = (
    (80, "critical"),
    (60, "high"),
    (40, "medium"),
    (20, "low"),
)


def classify_user_agent(user_agent: str | None) -> str:
    """Visitor state implied by the User-Agent alone."""
    ua = (user_agent or "").strip()
    if not ua:
        return VisitorState.SUSPICIOUS.value
    if BOT_RE.search(ua):
        return VisitorState.BOT.value
    if SCRAPER_RE.search(ua):
        return VisitorState.SCRAPER.value
    return VisitorState.NORMAL.value


def risk_score(state: str, minute_count: int = 0, minute_limit: int = 0) -> int:
    """Risk in [0, 100] from the visitor state and how close the IP is to its minute limit."""
    base = RISK_BASE.get(state, 0)
    utilization = min(minute_count / minute_limit, 1.0) if minute_limit > 0 else 0.0
    return max(0, min(100, round(base + UTILIZATION_POINTS * utilization)))


def risk_level(score: int) -> str:
    for floor, level in RISK_LEVELS:
        if score >= floor:
            return level
    return "none"


def parse_ip_or_network(value: str) -> ipaddress.IPv4Network | ipaddress.IPv6Network:
    """
    Parse an IP address or CIDR block.

    Raises:
        ValidationError: If the value is neither
    """
    text = (value or "").strip()
    try:
        return ipaddress.ip_network(text, strict=False)
    except ValueError as exc:
        raise ValidationError(f"Invalid IP address or CIDR '{value}'") from exc


def normalize_ip_entry(value: str) -> str:
    """Canonical text for a rule entry: bare address for single hosts, CIDR otherwise."""
    network = parse_ip_or_network(value)
    if network.num_addresses == 1 and "/" not in value:
        return str(network.network_address)
    return str(network)


def ip_matches(ip: str, entries: Iterable[str]) -> bool:
    """Whether ip equals or falls inside any of the entries. Unparseable entries never match."""
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return ip in entries
    for entry in entries:
        try:
            if address in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            continue
    return False


def is_public_ip(ip: str) -> bool:
    try:
        return ipaddress.ip_address(ip).is_global
    except ValueError:
        return False
