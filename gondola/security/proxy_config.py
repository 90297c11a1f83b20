"""Image proxy configuration: a single persisted row holding the gate's settings."""

from __future__ import annotations

import json
import logging
import threading
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..errors import ValidationError
from ..utils import utcnow_iso
from .classification import ip_matches, normalize_ip_entry

if TYPE_CHECKING:
    from ..db import CatalogDatabase

logger = logging.getLogger(__name__)

MiB = 1024 * 1024


class ImageProxyConfig(BaseModel):
    """Feature toggles, limits and IP lists for the image proxy and security gate."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # Feature toggles
    tracking_enabled: bool = Field(True, alias="trackingEnabled")
    cache_enabled: bool = Field(True, alias="cacheEnabled")
    rate_limit_enabled: bool = Field(True, alias="rateLimitEnabled")
    hotlink_protection_enabled: bool = Field(False, alias="hotlinkProtectionEnabled")

    # Cache
    cache_ttl: int = Field(3600, alias="cacheTTL", ge=60, le=86400)
    cache_max_size: int = Field(100 * MiB, alias="cacheMaxSize", ge=0)

    # Rate limits per IP
    rate_limit_per_minute: int = Field(100, alias="rateLimitPerMinute", ge=1)
    rate_limit_per_hour: int = Field(1000, alias="rateLimitPerHour", ge=1)
    rate_limit_per_day: int = Field(10000, alias="rateLimitPerDay", ge=1)

    # Hotlink protection
    allowed_domains: list[str] = Field(default_factory=list, alias="allowedDomains")
    allow_empty_referer: bool = Field(True, alias="allowEmptyReferer")

    # IP management
    blacklisted_ips: list[str] = Field(default_factory=list, alias="blacklistedIPs")
    whitelisted_ips: list[str] = Field(default_factory=list, alias="whitelistedIPs")
    auto_block_threshold: int = Field(200, alias="autoBlockThreshold", ge=1)
    auto_block_enabled: bool = Field(True, alias="autoBlockEnabled")

    # Alerts
    alerts_enabled: bool = Field(False, alias="alertsEnabled")
    alert_email: str | None = Field(None, alias="alertEmail")
    alert_webhook: str | None = Field(None, alias="alertWebhook")
    alert_threshold_requests: int = Field(500, alias="alertThresholdRequests", ge=1)
    alert_threshold_unique_ips: int = Field(100, alias="alertThresholdUniqueIPs", ge=1)

    retention_days: int = Field(30, alias="retentionDays", ge=1, le=365)
    is_active: bool = Field(True, alias="isActive")

    @field_validator("blacklisted_ips", "whitelisted_ips")
    @classmethod
    def _check_ips(cls, values: list[str]) -> list[str]:
        normalized: list[str] = []
        for value in values:
            try:
                entry = normalize_ip_entry(value)
            except ValidationError as exc:
                raise ValueError(exc.message) from exc
            if entry not in normalized:
                normalized.append(entry)
        return normalized

    @field_validator("allowed_domains")
    @classmethod
    def _clean_domains(cls, values: list[str]) -> list[str]:
        return [v.strip().lower() for v in values if v and v.strip()]

    def is_ip_blocked(
        self,
        ip: str,
        extra_whitelist: list[str] | None = None,
        extra_blacklist: list[str] | None = None,
    ) -> bool:
        """Whether ip is blacklisted. A whitelisted ip is never blocked."""
        if self.is_ip_whitelisted(ip, extra_whitelist):
            return False
        return ip_matches(ip, [*self.blacklisted_ips, *(extra_blacklist or [])])

    def is_ip_whitelisted(self, ip: str, extra_whitelist: list[str] | None = None) -> bool:
        return ip_matches(ip, [*self.whitelisted_ips, *(extra_whitelist or [])])

    def is_referer_allowed(self, referer: str | None) -> bool:
        """Hotlink check: the referer host must contain one of the allowed domains."""
        if not self.hotlink_protection_enabled:
            return True
        if not referer:
            return self.allow_empty_referer
        if not self.allowed_domains:
            return True
        host = (urlparse(referer).hostname or referer).lower()
        return any(domain in host for domain in self.allowed_domains)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class ProxyConfigRepository:
    """Loads and stores the singleton config row, created on first access."""

    def __init__(self, db: CatalogDatabase):
        self.db = db
        self._lock = threading.Lock()
        self._cached: ImageProxyConfig | None = None

    def get(self, refresh: bool = False) -> ImageProxyConfig:
        """Get the config, creating the row with defaults if it does not exist."""
        with self._lock:
            if self._cached is not None and not refresh:
                return self._cached
            with self.db.connect() as conn:
                row = conn.execute("SELECT data FROM image_proxy_config WHERE id = 1").fetchone()
                if row is None:
                    now = utcnow_iso()
                    config = ImageProxyConfig()
                    conn.execute(
                        """
                        INSERT OR IGNORE INTO image_proxy_config (id, data, created_at, updated_at)
                        VALUES (1, ?, ?, ?)
                        """,
                        (json.dumps(config.to_dict()), now, now),
                    )
                    logger.info("Created default image proxy config")
                else:
                    config = ImageProxyConfig.model_validate(json.loads(row["data"]))
            self._cached = config
            return config

    def save(self, config: ImageProxyConfig) -> ImageProxyConfig:
        now = utcnow_iso()
        with self._lock:
            with self.db.connect() as conn:
                conn.execute(
                    """
                    INSERT INTO image_proxy_config (id, data, created_at, updated_at)
                    VALUES (1, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at
                    """,
                    (json.dumps(config.to_dict()), now, now),
                )
            self._cached = config
        return config

    def update(self, changes: dict[str, Any]) -> ImageProxyConfig:
        """
        Apply a partial update from the settings form.

        Raises:
            ValidationError: If any field fails validation
        """
        current = self.get().to_dict()
        try:
            config = ImageProxyConfig.model_validate({**current, **changes})
        except pydantic.ValidationError as exc:
            errors = [
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in exc.errors()
            ]
            raise ValidationError("Invalid image proxy configuration", errors=errors) from exc
        return self.save(config)

    def block_ip(self, ip: str, reason: str | None = None) -> ImageProxyConfig:
        """Add an IP or CIDR to the blacklist. Blocking twice is a no-op."""
        entry = normalize_ip_entry(ip)
        config = self.get(refresh=True)
        if entry in config.blacklisted_ips:
            return config
        updated = config.model_copy(update={"blacklisted_ips": [*config.blacklisted_ips, entry]})
        logger.warning(f"Blocked IP {entry}" + (f": {reason}" if reason else ""))
        return self.save(updated)

    def unblock_ip(self, ip: str) -> ImageProxyConfig:
        """Remove an IP or CIDR from the blacklist."""
        entry = normalize_ip_entry(ip)
        config = self.get(refresh=True)
        if entry not in config.blacklisted_ips:
            return config
        updated = config.model_copy(
            update={"blacklisted_ips": [i for i in config.blacklisted_ips if i != entry]}
        )
        logger.info(f"Unblocked IP {entry}")
        return self.save(updated)
