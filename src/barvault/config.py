"""Environment and CLI runtime configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Self

try:
    from dotenv import load_dotenv
except ImportError:
    load_dotenv = None

from barvault.domain.models import VENDOR_IDS


def parse_optional_positive_int(value: str | None, *, field_name: str) -> int | None:
    """Parse optional positive integer values from env strings."""
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    parsed = int(text)
    if parsed <= 0:
        raise ValueError(f"{field_name} must be positive")
    return parsed


def parse_vendor_priority(value: str | None, default: list[str] | None = None) -> list[str]:
    """Parse a comma-separated vendor list, preserving order and dropping duplicates."""
    fallback = default or list(VENDOR_IDS)
    if not value:
        return list(fallback)
    vendors: list[str] = []
    for item in value.split(","):
        vendor = item.strip().lower()
        if vendor and vendor not in vendors:
            vendors.append(vendor)
    return vendors or list(fallback)


@dataclass(frozen=True)
class Settings:
    """Immutable runtime settings."""

    tiingo_api_key: str = ""
    polygon_api_key: str = ""
    tiingo_base_url: str = "https://api.tiingo.com"
    polygon_base_url: str = "https://api.polygon.io"
    datasets_dir: str = "storage/datasets"
    cache_dir: str = "storage/datasets/.cache"
    coverage_db_path: str = "storage/coverage.db"
    cache_ttl_seconds: int = 3600
    request_delay_seconds: float = 1.1
    max_narrowing_steps: int = 60
    max_rate_limit_retries: int | None = None
    http_timeout_seconds: float = 30.0
    vendor_priority: list[str] = field(default_factory=lambda: list(VENDOR_IDS))
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> Self:
        """Create settings from environment variables."""
        if load_dotenv is not None:
            load_dotenv()
        raw = cls(
            tiingo_api_key=str(os.getenv("TIINGO_API_KEY", "")).strip(),
            polygon_api_key=str(os.getenv("POLYGON_API_KEY", "")).strip(),
            tiingo_base_url=str(
                os.getenv("TIINGO_BASE_URL", "https://api.tiingo.com")
            ).strip(),
            polygon_base_url=str(
                os.getenv("POLYGON_BASE_URL", "https://api.polygon.io")
            ).strip(),
            datasets_dir=str(os.getenv("DATASETS_DIR", "storage/datasets")).strip(),
            cache_dir=str(os.getenv("CACHE_DIR", "storage/datasets/.cache")).strip(),
            coverage_db_path=str(os.getenv("COVERAGE_DB_PATH", "storage/coverage.db")).strip(),
            cache_ttl_seconds=int(os.getenv("CACHE_TTL_SECONDS", "3600")),
            request_delay_seconds=float(os.getenv("REQUEST_DELAY_SECONDS", "1.1")),
            max_narrowing_steps=int(os.getenv("MAX_NARROWING_STEPS", "60")),
            max_rate_limit_retries=parse_optional_positive_int(
                os.getenv("MAX_RATE_LIMIT_RETRIES"),
                field_name="max_rate_limit_retries",
            ),
            http_timeout_seconds=float(os.getenv("HTTP_TIMEOUT_SECONDS", "30")),
            vendor_priority=parse_vendor_priority(os.getenv("VENDOR_PRIORITY")),
            log_level=str(os.getenv("LOG_LEVEL", "INFO")).strip().upper(),
        )
        return raw.validate()

    def with_overrides(self, **kwargs: object) -> Self:
        """Return a new settings object with updated values."""
        updated = replace(self, **kwargs)
        return updated.validate()

    def api_key_for(self, vendor: str) -> str:
        if vendor == "tiingo":
            return self.tiingo_api_key
        if vendor == "polygon":
            return self.polygon_api_key
        raise ValueError(f"Unknown vendor '{vendor}'")

    def validate(self) -> Self:
        """Validate settings fields."""
        if self.cache_ttl_seconds < 0:
            raise ValueError("cache_ttl_seconds must not be negative")
        if self.request_delay_seconds < 0:
            raise ValueError("request_delay_seconds must not be negative")
        if self.max_narrowing_steps < 0:
            raise ValueError("max_narrowing_steps must not be negative")
        if self.max_rate_limit_retries is not None and self.max_rate_limit_retries <= 0:
            raise ValueError("max_rate_limit_retries must be positive")
        if self.http_timeout_seconds <= 0:
            raise ValueError("http_timeout_seconds must be positive")
        if not self.vendor_priority:
            raise ValueError("vendor_priority must name at least one vendor")
        unknown = [vendor for vendor in self.vendor_priority if vendor not in VENDOR_IDS]
        if unknown:
            supported = ", ".join(VENDOR_IDS)
            raise ValueError(
                f"vendor_priority has unknown vendors {unknown}. Supported: {supported}"
            )
        return self
