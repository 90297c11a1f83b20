"""Runtime configuration loaded from the environment (and an optional .env file)."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

load_dotenv()

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "output"


def _env_path(name: str) -> Path | None:
    value = os.getenv(name, "").strip()
    return Path(value) if value else None


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    # ── Storage ──────────────────────────────────────────────────────────────
    data_dir: Path = Field(default_factory=lambda: _env_path("GONDOLA_DATA_DIR") or DEFAULT_DATA_DIR)
    db_path: Path | None = Field(default_factory=lambda: _env_path("GONDOLA_DB_PATH"))
    screenshots_dir: Path | None = Field(default_factory=lambda: _env_path("GONDOLA_SCREENSHOTS_DIR"))

    # ── Admin panel ──────────────────────────────────────────────────────────
    admin_password: str = Field(default_factory=lambda: os.getenv("GONDOLA_ADMIN_PASSWORD", "change-me"))
    session_ttl_hours: int = Field(default_factory=lambda: int(os.getenv("GONDOLA_SESSION_TTL_HOURS", "24")), ge=1)

    # ── Worker pool ──────────────────────────────────────────────────────────
    worker_poll_interval: float = Field(default_factory=lambda: float(os.getenv("GONDOLA_WORKER_POLL_INTERVAL", "5")), gt=0)
    max_concurrent_jobs: int = Field(default_factory=lambda: int(os.getenv("GONDOLA_MAX_CONCURRENT_JOBS", "10")), ge=1)
    job_timeout_seconds: float = Field(default_factory=lambda: float(os.getenv("GONDOLA_JOB_TIMEOUT_SECONDS", "1800")), gt=0)
    stale_check_interval: float = Field(default_factory=lambda: float(os.getenv("GONDOLA_STALE_CHECK_INTERVAL", "60")), gt=0)
    screenshot_interval_seconds: float = Field(default_factory=lambda: float(os.getenv("GONDOLA_SCREENSHOT_INTERVAL", "10")), ge=0)
    log_buffer_size: int = Field(default_factory=lambda: int(os.getenv("GONDOLA_LOG_BUFFER_SIZE", "500")), ge=10)
    headless: bool = Field(default_factory=lambda: _env_bool("GONDOLA_HEADLESS", "1"))

    # Retention of terminal jobs
    completed_job_ttl_hours: int = Field(default_factory=lambda: int(os.getenv("GONDOLA_COMPLETED_JOB_TTL_HOURS", "24")), ge=1)
    failed_job_ttl_days: int = Field(default_factory=lambda: int(os.getenv("GONDOLA_FAILED_JOB_TTL_DAYS", "7")), ge=1)
    scheduler_interval: int = Field(default_factory=lambda: int(os.getenv("GONDOLA_SCHEDULER_INTERVAL", "60")), ge=1)

    # ── Taxonomy mapping ─────────────────────────────────────────────────────
    auto_map_threshold: float = Field(default_factory=lambda: float(os.getenv("GONDOLA_AUTO_MAP_THRESHOLD", "0.75")))
    extraction_sample_size: int = Field(default_factory=lambda: int(os.getenv("GONDOLA_EXTRACTION_SAMPLE_SIZE", "1000")), ge=1)

    # ── Security ─────────────────────────────────────────────────────────────
    ip_lookup_enabled: bool = Field(default_factory=lambda: _env_bool("GONDOLA_IP_LOOKUP_ENABLED", "0"))

    @field_validator("auto_map_threshold")
    @classmethod
    def _check_threshold(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("auto_map_threshold must be between 0 and 1")
        return value

    @model_validator(mode="after")
    def _derive_paths(self) -> "Settings":
        if self.db_path is None:
            self.db_path = self.data_dir / "gondola.db"
        if self.screenshots_dir is None:
            self.screenshots_dir = self.data_dir / "screenshots"
        return self


_settings_cache: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings, loading from the environment if needed."""
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings()
    return _settings_cache


def reset_settings() -> Settings:
    """Drop the cached settings and load them again."""
    global _settings_cache
    _settings_cache = None
    return get_settings()
