"""Geolocation lookups for suspicious IPs via ip.guide."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

import httpx

from .classification import is_public_ip

logger = logging.getLogger(__name__)

IP_GUIDE_URL = "https://ip.guide/{ip}"
CACHE_TTL_SECONDS = 24 * 60 * 60
LOOKUP_TIMEOUT_SECONDS = 3.0


def summarize(data: dict) -> dict:
    """Reduce an ip.guide response to {city, country, isp, asn}."""
    location = data.get("location") or {}
    network = data.get("network") or {}
    autonomous = network.get("autonomous_system") or {}
    return {
        "city": location.get("city"),
        "country": location.get("country"),
        "isp": autonomous.get("organization") or autonomous.get("name"),
        "asn": autonomous.get("asn"),
    }


class IpInfoClient:
    """Cached ip.guide client. Failed lookups return None and are not cached."""

    def __init__(
        self,
        client: httpx.Client | None = None,
        ttl: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(LOOKUP_TIMEOUT_SECONDS),
            follow_redirects=True,
        )
        self._ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._cache: dict[str, tuple[float, dict]] = {}

    def lookup(self, ip: str) -> dict | None:
        if not is_public_ip(ip):
            return None
        now = self._clock()
        with self._lock:
            cached = self._cache.get(ip)
            if cached and now - cached[0] < self._ttl:
                return cached[1]

        try:
            response = self._client.get(IP_GUIDE_URL.format(ip=ip))
            response.raise_for_status()
            info = summarize(response.json())
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(f"IP lookup failed for {ip}: {exc}")
            return None

        with self._lock:
            self._cache[ip] = (now, info)
        return info

    def close(self) -> None:
        self._client.close()
