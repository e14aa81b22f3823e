"""Core market data domain models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import date
from typing import Any, Literal, Self

from barvault.errors import ConfigurationError
from barvault.utils.time import parse_date, utc_now_iso

SourceId = Literal["auto", "csv", "tiingo", "polygon"]
VendorId = Literal["tiingo", "polygon"]
Timeframe = Literal["1d", "1h", "15m", "1m"]

SOURCE_IDS: tuple[str, ...] = ("auto", "csv", "tiingo", "polygon")
VENDOR_IDS: tuple[str, ...] = ("tiingo", "polygon")
TIMEFRAMES: tuple[str, ...] = ("1d", "1h", "15m", "1m")
INTRADAY_TIMEFRAMES = frozenset({"1h", "15m", "1m"})


def normalize_source(value: str | None, default: str = "auto") -> str:
    """Normalize source selector values, mapping local aliases to csv."""
    mapping = {
        "auto": "auto",
        "csv": "csv",
        "local": "csv",
        "file": "csv",
        "tiingo": "tiingo",
        "polygon": "polygon",
    }
    if value is None:
        return default
    candidate = value.strip().lower()
    return mapping.get(candidate, candidate)


def normalize_timeframe(value: str) -> str:
    """Map common timeframe spellings onto the canonical ids."""
    mapping = {
        "1d": "1d",
        "day": "1d",
        "1day": "1d",
        "daily": "1d",
        "1h": "1h",
        "1hour": "1h",
        "60m": "1h",
        "15m": "15m",
        "15min": "15m",
        "1m": "1m",
        "1min": "1m",
    }
    normalized = value.strip().lower()
    return mapping.get(normalized, normalized)


def is_intraday(timeframe: str) -> bool:
    return timeframe in INTRADAY_TIMEFRAMES


@dataclass(frozen=True)
class Bar:
    """One OHLCV observation."""

    timestamp: str
    open: float
    high: float
    low: float
    close: float
    volume: float

    def to_record(self) -> dict[str, Any]:
        """Convert bar to a JSON-serializable dict."""
        return asdict(self)


@dataclass(frozen=True)
class DataRequest:
    """Logical request for one historical bar series."""

    symbol: str
    timeframe: str = "1d"
    start: str | None = None
    end: str | None = None
    source: str = "auto"
    adjusted: bool = True

    def has_window(self) -> bool:
        return bool(self.start) and bool(self.end)

    def start_date(self) -> date | None:
        return parse_date(self.start)

    def end_date(self) -> date | None:
        return parse_date(self.end)

    def validate(self) -> Self:
        """Validate request fields.

        Source and timeframe aliases are normalized first; the returned request
        carries the canonical ids.
        """
        source = normalize_source(self.source)
        timeframe = normalize_timeframe(self.timeframe)
        if source != self.source or timeframe != self.timeframe:
            return replace(self, source=source, timeframe=timeframe).validate()
        if not self.symbol or not self.symbol.strip():
            raise ConfigurationError("symbol must be a non-empty string")
        if self.source not in SOURCE_IDS:
            supported = ", ".join(SOURCE_IDS)
            raise ConfigurationError(f"source must be one of {supported}, got '{self.source}'")
        if self.timeframe not in TIMEFRAMES:
            supported = ", ".join(TIMEFRAMES)
            raise ConfigurationError(
                f"timeframe must be one of {supported}, got '{self.timeframe}'"
            )
        start = self.start_date()
        end = self.end_date()
        if self.start and start is None:
            raise ConfigurationError(f"start is not a valid date: '{self.start}'")
        if self.end and end is None:
            raise ConfigurationError(f"end is not a valid date: '{self.end}'")
        if start is not None and end is not None and start > end:
            raise ConfigurationError(f"start {self.start} is after end {self.end}")
        return self


@dataclass(frozen=True)
class FetchRange:
    """Calendar-date window actually requested from a vendor."""

    start_date: date
    end_date: date

    def is_empty(self) -> bool:
        return self.end_date < self.start_date


@dataclass(frozen=True)
class CoverageRecord:
    """Date range already known to be available locally for a series."""

    source: str
    symbol: str
    timeframe: str
    start: str | None
    end: str | None
    adjusted: bool
    rows: int
    path: str
    created_at: str = field(default_factory=utc_now_iso)


@dataclass(frozen=True)
class DatasetResult:
    """Outcome of resolving one request against local data and vendors."""

    source: str
    rows: int
    start: str | None
    end: str | None
    path: str
    fetched: bool = False
