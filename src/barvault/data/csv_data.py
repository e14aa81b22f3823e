"""Local dataset file source."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

import pandas as pd

from barvault.data.bars import (
    BAR_FIELDS,
    PRICE_FIELDS,
    dedupe_bars,
    filter_bars_for_request,
    sanitize_bar,
    slugify,
    sort_bars_chronologically,
)
from barvault.domain.models import Bar, DataRequest
from barvault.errors import DatasetNotFoundError
from barvault.utils.time import parse_date

logger = logging.getLogger("barvault.data.csv")

TIMESTAMP_COLUMN_CANDIDATES = ("timestamp", "date", "datetime")


def dataset_filename(symbol: str, timeframe: str) -> str:
    """Return the deterministic dataset file name for a series."""
    return f"{slugify(symbol)}_{slugify(timeframe)}.csv"


def read_dataset_bars(path: Path) -> list[Bar]:
    """Parse a dataset file into bars, dropping malformed rows individually."""
    try:
        frame = pd.read_csv(
            path,
            dtype=str,
            keep_default_na=False,
            skipinitialspace=True,
            on_bad_lines="skip",
        )
    except pd.errors.EmptyDataError:
        return []
    if frame.empty:
        return []

    lower_to_original = {str(column).strip().lower(): column for column in frame.columns}
    rename_map: dict[str, str] = {}
    for candidate in TIMESTAMP_COLUMN_CANDIDATES:
        if candidate in lower_to_original:
            rename_map[lower_to_original[candidate]] = "timestamp"
            break
    for name in PRICE_FIELDS:
        if name in lower_to_original:
            rename_map[lower_to_original[name]] = name
    frame = frame.rename(columns=rename_map)
    for name in PRICE_FIELDS:
        if name in frame.columns:
            frame[name] = pd.to_numeric(frame[name], errors="coerce")

    bars: list[Bar] = []
    dropped = 0
    for record in frame.to_dict(orient="records"):
        bar = sanitize_bar(record)
        if bar is None:
            dropped += 1
            continue
        bars.append(bar)
    if dropped:
        logger.debug("Dropped %s malformed rows from %s", dropped, path)
    return bars


def format_number(value: float) -> str:
    number = float(value)
    if number.is_integer():
        return str(int(number))
    return f"{number:.6f}".rstrip("0").rstrip(".")


def write_dataset_csv(path: Path, bars: Iterable[Bar]) -> int:
    """Write bars as a dataset file in ascending order. Returns the row count."""
    ordered = sort_bars_chronologically(bars)
    rows = [
        [
            bar.timestamp,
            format_number(bar.open),
            format_number(bar.high),
            format_number(bar.low),
            format_number(bar.close),
            format_number(bar.volume),
        ]
        for bar in ordered
    ]
    path.parent.mkdir(parents=True, exist_ok=True)
    frame = pd.DataFrame(rows, columns=list(BAR_FIELDS))
    frame.to_csv(path, index=False, lineterminator="\n")
    return len(rows)


def read_dataset_metadata(path: Path) -> tuple[int, str | None, str | None]:
    """Return row count and first/last calendar dates of a dataset file."""
    bars = sort_bars_chronologically(read_dataset_bars(path))
    if not bars:
        return 0, None, None
    first = parse_date(bars[0].timestamp)
    last = parse_date(bars[-1].timestamp)
    return (
        len(bars),
        first.isoformat() if first is not None else None,
        last.isoformat() if last is not None else None,
    )


class CsvBarSource:
    """Load OHLCV bars from registered local dataset files."""

    source_id = "csv"

    def __init__(self, datasets_dir: str | Path) -> None:
        self.datasets_dir = Path(datasets_dir)
        self._bars_cache: dict[Path, tuple[tuple[int, int], list[Bar]]] = {}

    def dataset_path(self, symbol: str, timeframe: str) -> Path:
        return self.datasets_dir / dataset_filename(symbol, timeframe)

    def load_bars(self, request: DataRequest) -> list[Bar]:
        path = self.dataset_path(request.symbol, request.timeframe)
        bars = self._load_series(path, request)
        return sort_bars_chronologically(filter_bars_for_request(bars, request))

    def _load_series(self, path: Path, request: DataRequest) -> list[Bar]:
        try:
            stat = path.stat()
        except FileNotFoundError as exc:
            raise DatasetNotFoundError(
                f"No dataset for {request.symbol} {request.timeframe} at {path}"
            ) from exc

        signature = (stat.st_mtime_ns, stat.st_size)
        cached = self._bars_cache.get(path)
        if cached is not None and cached[0] == signature:
            return cached[1]

        bars = dedupe_bars(read_dataset_bars(path))
        self._bars_cache[path] = (signature, bars)
        return bars
