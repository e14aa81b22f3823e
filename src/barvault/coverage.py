"""Coverage resolution and the vendor fallback chain.

The resolver decides, for one logical series request, whether the local
dataset already spans the requested window. When it does not, it walks the
preferred vendors in order, writes the first successful result to the
dataset file and records the range that was actually returned.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import replace
from datetime import date, datetime
from pathlib import Path

from barvault.data.bars import sort_bars_chronologically
from barvault.data.base import BarSource
from barvault.data.csv_data import CsvBarSource, read_dataset_metadata, write_dataset_csv
from barvault.data.remote import utc_today
from barvault.domain.models import VENDOR_IDS, Bar, CoverageRecord, DataRequest, DatasetResult
from barvault.errors import (
    BarVaultError,
    ConfigurationError,
    CoverageInsufficientError,
    DatasetNotFoundError,
    FallbackExhaustedError,
    NotFoundError,
    StorageError,
)
from barvault.state.store import CoverageStore
from barvault.utils.time import format_date, parse_date, utc_now

DEFAULT_VENDOR_PRIORITY: tuple[str, ...] = ("tiingo", "polygon")

logger = logging.getLogger("barvault.coverage")


def covers(record: CoverageRecord, request: DataRequest) -> bool:
    """Return True when [request.start, request.end] lies inside the record's range.

    Both ends are inclusive and compared as calendar dates. Missing bounds on
    either side never cover.
    """
    record_start = parse_date(record.start)
    record_end = parse_date(record.end)
    request_start = request.start_date()
    request_end = request.end_date()
    if record_start is None or record_end is None:
        return False
    if request_start is None or request_end is None:
        return False
    return record_start <= request_start and request_end <= record_end


def clamp_request_range(request: DataRequest, today: date) -> DataRequest:
    """Clamp a future end date to today.

    Only the end moves, so a window entirely in the future comes back with
    end before start. Requests that are already valid are returned unchanged
    (same object).
    """
    end = request.end_date()
    if end is None or end <= today:
        return request
    return replace(request, end=format_date(today))


def is_empty_window(request: DataRequest) -> bool:
    start = request.start_date()
    end = request.end_date()
    return start is not None and end is not None and end < start


class CoverageResolver:
    """Ensure local datasets exist for requests, fetching from vendors when needed."""

    def __init__(
        self,
        datasets_dir: str | Path,
        store: CoverageStore,
        vendors: Mapping[str, BarSource],
        vendor_priority: Sequence[str] = DEFAULT_VENDOR_PRIORITY,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.csv_source = CsvBarSource(datasets_dir)
        self.store = store
        self.vendors = dict(vendors)
        self.vendor_priority = tuple(vendor_priority)
        self.now = now

    @property
    def datasets_dir(self) -> Path:
        return self.csv_source.datasets_dir

    def preferred_vendors(self, source: str) -> list[str]:
        if source in VENDOR_IDS:
            return [source]
        return list(self.vendor_priority)

    def ensure_datasets(self, requests: Iterable[DataRequest]) -> list[DatasetResult]:
        """Ensure every series of a multi-series run, one after another."""
        return [self.ensure_dataset(request) for request in requests]

    def ensure_dataset(self, request: DataRequest) -> DatasetResult:
        request = self._prepare(request)
        path = self.csv_source.dataset_path(request.symbol, request.timeframe)
        if is_empty_window(request):
            logger.info(
                "%s %s window starts after today; nothing to resolve",
                request.symbol,
                request.timeframe,
            )
            return DatasetResult(
                source=request.source,
                rows=0,
                start=None,
                end=None,
                path=str(path),
                fetched=False,
            )

        coverage = self._coverage_for(request, path)
        if coverage is not None and path.exists() and covers(coverage, request):
            logger.debug(
                "coverage hit | %s %s | %s..%s",
                request.symbol,
                request.timeframe,
                coverage.start,
                coverage.end,
            )
            return DatasetResult(
                source=coverage.source,
                rows=coverage.rows,
                start=coverage.start,
                end=coverage.end,
                path=str(path),
                fetched=False,
            )

        if request.source == "csv":
            if not path.exists():
                raise DatasetNotFoundError(
                    f"Dataset missing for {request.symbol} {request.timeframe}. "
                    f"Place {path.name} in {self.datasets_dir} or register it."
                )
            covered = (
                f"{coverage.start}..{coverage.end}"
                if coverage is not None and coverage.start and coverage.end
                else "no rows"
            )
            raise CoverageInsufficientError(
                f"Dataset {path.name} covers {covered} but "
                f"{request.start}..{request.end} was requested"
            )

        return self._fetch_with_fallback(request, path)

    def load_bars(self, request: DataRequest) -> list[Bar]:
        """Ensure the dataset, then serve the request window from the local file."""
        prepared = self._prepare(request)
        if is_empty_window(prepared):
            return []
        self.ensure_dataset(prepared)
        return self.csv_source.load_bars(prepared)

    def _prepare(self, request: DataRequest) -> DataRequest:
        request = request.validate()
        if not request.has_window():
            raise ConfigurationError("data requests must include start and end dates.")
        return clamp_request_range(request, utc_today(self.now))

    def _coverage_for(self, request: DataRequest, path: Path) -> CoverageRecord | None:
        coverage = self.store.get_coverage(request.symbol, request.timeframe)
        if coverage is not None or not path.exists():
            return coverage
        rows, start, end = read_dataset_metadata(path)
        coverage = CoverageRecord(
            source="csv",
            symbol=request.symbol,
            timeframe=request.timeframe,
            start=start,
            end=end,
            adjusted=request.adjusted,
            rows=rows,
            path=str(path),
        )
        logger.info(
            "Registered existing dataset %s covering %s..%s (%s rows)",
            path.name,
            start,
            end,
            rows,
        )
        self.store.save_coverage(coverage)
        return coverage

    def _fetch_with_fallback(self, request: DataRequest, path: Path) -> DatasetResult:
        preferred = self.preferred_vendors(request.source)
        failures: list[tuple[str, str]] = []
        for vendor_id in preferred:
            source = self.vendors.get(vendor_id)
            if source is None:
                failures.append((vendor_id, "source not configured"))
                continue
            try:
                return self._fetch_from(vendor_id, source, request, path)
            except BarVaultError as exc:
                logger.warning(
                    "%s failed for %s %s: %s",
                    vendor_id,
                    request.symbol,
                    request.timeframe,
                    exc,
                )
                failures.append((vendor_id, str(exc)))

        if not failures:
            raise ConfigurationError("no remote sources configured")
        reasons = " | ".join(f"{vendor_id}: {reason}" for vendor_id, reason in failures)
        raise FallbackExhaustedError(
            f"Failed to fetch {request.symbol} {request.timeframe} "
            f"({' -> '.join(preferred)}): all remote sources failed: {reasons}",
            failures,
        )

    def _fetch_from(
        self,
        vendor_id: str,
        source: BarSource,
        request: DataRequest,
        path: Path,
    ) -> DatasetResult:
        bars = source.load_bars(request)
        if not bars:
            raise NotFoundError(
                f"No data returned for {request.symbol} ({request.timeframe}) via {vendor_id}"
            )
        ordered = sort_bars_chronologically(bars)
        try:
            rows = write_dataset_csv(path, ordered)
        except OSError as exc:
            raise StorageError(f"Unable to write dataset {path}: {exc}") from exc
        first = parse_date(ordered[0].timestamp)
        last = parse_date(ordered[-1].timestamp)
        start = first.isoformat() if first is not None else None
        end = last.isoformat() if last is not None else None
        self.store.save_coverage(
            CoverageRecord(
                source=vendor_id,
                symbol=request.symbol,
                timeframe=request.timeframe,
                start=start,
                end=end,
                adjusted=request.adjusted,
                rows=rows,
                path=str(path),
            )
        )
        logger.info(
            "dataset | %s %s via %s | %s..%s | %s rows",
            request.symbol,
            request.timeframe,
            vendor_id,
            start,
            end,
            rows,
        )
        return DatasetResult(
            source=vendor_id,
            rows=rows,
            start=start,
            end=end,
            path=str(path),
            fetched=True,
        )
