"""TTL-governed on-disk bar cache.

One JSON document per (symbol, timeframe, adjustment). The requested date
window is not part of the key: a single entry serves any window for the
series until it expires.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

from barvault.data.bars import sanitize_bar, slugify
from barvault.domain.models import Bar
from barvault.utils.time import parse_timestamp, utc_now

DEFAULT_CACHE_TTL = timedelta(hours=1)

logger = logging.getLogger("barvault.data.cache")


def cache_path(cache_dir: Path, symbol: str, timeframe: str, adjusted: bool) -> Path:
    """Return the cache file path for a series. Independent of the date window."""
    slug = "_".join(
        segment
        for segment in (slugify(symbol), slugify(timeframe), "adj" if adjusted else "raw")
        if segment
    )
    return cache_dir / f"{slug}.json"


@dataclass(frozen=True)
class CacheEntry:
    """Cached bars with their fetch instant."""

    fetched_at: datetime
    bars: list[Bar]


class BarCache:
    """Read and write cache entries under a vendor-specific directory."""

    def __init__(
        self,
        cache_dir: str | Path,
        ttl: timedelta = DEFAULT_CACHE_TTL,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self.ttl = ttl
        self.now = now

    def path_for(self, symbol: str, timeframe: str, adjusted: bool) -> Path:
        return cache_path(self.cache_dir, symbol, timeframe, adjusted)

    def read(self, symbol: str, timeframe: str, adjusted: bool) -> CacheEntry | None:
        """Return the stored entry regardless of age, or None when absent or unreadable."""
        path = self.path_for(symbol, timeframe, adjusted)
        if not path.exists():
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable cache file %s: %s", path, exc)
            return None
        if not isinstance(payload, dict) or not isinstance(payload.get("bars"), list):
            logger.warning("Ignoring malformed cache file %s", path)
            return None
        fetched_at = parse_timestamp(payload.get("fetchedAt"))
        if fetched_at is None:
            logger.warning("Ignoring cache file without fetchedAt: %s", path)
            return None
        bars = [bar for bar in (sanitize_bar(raw) for raw in payload["bars"]) if bar is not None]
        return CacheEntry(fetched_at=fetched_at.to_pydatetime(), bars=bars)

    def is_fresh(self, entry: CacheEntry) -> bool:
        return self.now() - entry.fetched_at < self.ttl

    def read_fresh(self, symbol: str, timeframe: str, adjusted: bool) -> list[Bar] | None:
        """Return cached bars only while the entry is younger than the TTL."""
        entry = self.read(symbol, timeframe, adjusted)
        if entry is None:
            return None
        if not self.is_fresh(entry):
            logger.debug("Cache entry for %s %s is stale", symbol, timeframe)
            return None
        return entry.bars

    def write(self, symbol: str, timeframe: str, adjusted: bool, bars: Iterable[Bar]) -> Path:
        """Overwrite the entry for a series with a new fetch instant."""
        path = self.path_for(symbol, timeframe, adjusted)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "fetchedAt": self.now().isoformat(),
            "bars": [bar.to_record() for bar in bars],
        }
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path
