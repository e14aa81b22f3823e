"""Bar utilities shared by every source.

Every connector funnels records through these helpers so that cached,
local and remote series all come out with the same shape and ordering.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping
from numbers import Real
from typing import Any

import pandas as pd

from barvault.domain.models import Bar, DataRequest
from barvault.utils.time import parse_timestamp

BAR_FIELDS = ("timestamp", "open", "high", "low", "close", "volume")
PRICE_FIELDS = ("open", "high", "low", "close", "volume")

_EPOCH = pd.Timestamp(0, tz="UTC")


def slugify(value: str) -> str:
    """Lowercase and collapse non-alphanumeric runs into single underscores."""
    return re.sub(r"[^a-z0-9]+", "_", value.lower()).strip("_")


def to_number(value: Any) -> float | None:
    """Coerce numbers and numeric strings into a finite float."""
    if isinstance(value, bool):
        return None
    if isinstance(value, Real):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return number


def _finite_real(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, Real):
        return False
    return math.isfinite(float(value))


def sanitize_bar(raw: Mapping[str, Any] | Bar | None) -> Bar | None:
    """Return a fresh six-field bar, or None when any field is missing or mistyped."""
    if raw is None:
        return None
    if isinstance(raw, Bar):
        record: Mapping[str, Any] = raw.to_record()
    elif isinstance(raw, Mapping):
        record = raw
    else:
        return None

    timestamp = record.get("timestamp")
    if not isinstance(timestamp, str):
        return None
    values = [record.get(name) for name in PRICE_FIELDS]
    if not all(_finite_real(value) for value in values):
        return None
    open_, high, low, close, volume = (float(value) for value in values)
    return Bar(
        timestamp=timestamp,
        open=open_,
        high=high,
        low=low,
        close=close,
        volume=volume,
    )


def filter_bars_for_request(bars: Iterable[Bar], request: DataRequest) -> list[Bar]:
    """Keep bars inside the request's inclusive [start, end] window.

    Missing bounds are not enforced. Bars with unparsable timestamps are dropped.
    """
    start = parse_timestamp(request.start)
    end = parse_timestamp(request.end)
    kept: list[Bar] = []
    for bar in bars:
        stamp = parse_timestamp(bar.timestamp)
        if stamp is None:
            continue
        if start is not None and stamp < start:
            continue
        if end is not None and stamp > end:
            continue
        kept.append(bar)
    return kept


def _sort_key(bar: Bar) -> pd.Timestamp:
    stamp = parse_timestamp(bar.timestamp)
    return _EPOCH if stamp is None else stamp


def sort_bars_chronologically(bars: Iterable[Bar]) -> list[Bar]:
    """Return a new list sorted ascending by parsed timestamp."""
    return sorted(bars, key=_sort_key)


def dedupe_bars(bars: Iterable[Bar]) -> list[Bar]:
    """Drop repeated timestamps, keeping the first occurrence."""
    deduped: list[Bar] = []
    seen: set[str] = set()
    for bar in bars:
        if bar.timestamp in seen:
            continue
        seen.add(bar.timestamp)
        deduped.append(bar)
    return deduped


def bars_to_frame(bars: Iterable[Bar]) -> pd.DataFrame:
    """Convert bars to an OHLCV DataFrame with a UTC datetime index."""
    records = [bar.to_record() for bar in bars]
    if not records:
        frame = pd.DataFrame(columns=list(PRICE_FIELDS), dtype=float)
        frame.index = pd.DatetimeIndex([], tz="UTC", name="timestamp")
        return frame
    frame = pd.DataFrame.from_records(records)
    frame.index = pd.to_datetime(frame["timestamp"], utc=True, format="mixed")
    frame.index.name = "timestamp"
    return frame[list(PRICE_FIELDS)].astype(float)
