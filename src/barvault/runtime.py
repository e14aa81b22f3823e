"""Runtime wiring from settings to sources, coverage store and resolver."""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from barvault.config import Settings
from barvault.coverage import CoverageResolver
from barvault.data.polygon_data import PolygonSource
from barvault.data.remote import RemoteBarSource
from barvault.data.tiingo_data import TiingoSource
from barvault.state.sqlite_store import SqliteCoverageStore
from barvault.state.store import CoverageStore
from barvault.utils.time import utc_now

VENDOR_CLASSES: dict[str, type[RemoteBarSource]] = {
    "tiingo": TiingoSource,
    "polygon": PolygonSource,
}


def build_vendor_source(
    vendor: str,
    settings: Settings,
    session: Any | None = None,
    now: Callable[[], datetime] = utc_now,
    sleep: Callable[[float], None] = time.sleep,
) -> RemoteBarSource:
    """Construct one vendor source with its key resolved from settings."""
    source_class = VENDOR_CLASSES.get(vendor)
    if source_class is None:
        supported = ", ".join(VENDOR_CLASSES)
        raise ValueError(f"Unknown vendor '{vendor}'. Supported: {supported}")
    base_url = settings.tiingo_base_url if vendor == "tiingo" else settings.polygon_base_url
    return source_class(
        settings.api_key_for(vendor) or None,
        base_url=base_url,
        cache_dir=Path(settings.cache_dir) / vendor,
        cache_ttl=timedelta(seconds=settings.cache_ttl_seconds),
        session=session,
        now=now,
        sleep=sleep,
        request_delay=settings.request_delay_seconds,
        max_narrowing_steps=settings.max_narrowing_steps,
        max_rate_limit_retries=settings.max_rate_limit_retries,
        timeout=settings.http_timeout_seconds,
    )


def build_vendor_sources(
    settings: Settings,
    session: Any | None = None,
    now: Callable[[], datetime] = utc_now,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, RemoteBarSource]:
    return {
        vendor: build_vendor_source(vendor, settings, session=session, now=now, sleep=sleep)
        for vendor in VENDOR_CLASSES
    }


def build_coverage_store(settings: Settings) -> CoverageStore:
    return SqliteCoverageStore(settings.coverage_db_path)


def build_resolver(
    settings: Settings,
    store: CoverageStore | None = None,
    session: Any | None = None,
    now: Callable[[], datetime] = utc_now,
    sleep: Callable[[float], None] = time.sleep,
) -> CoverageResolver:
    """Wire a resolver with SQLite coverage and both vendors."""
    return CoverageResolver(
        datasets_dir=settings.datasets_dir,
        store=store if store is not None else build_coverage_store(settings),
        vendors=build_vendor_sources(settings, session=session, now=now, sleep=sleep),
        vendor_priority=settings.vendor_priority,
        now=now,
    )
