"""Shared machinery for rate-limited remote vendors.

A vendor only describes how to build a request for one date chunk and how to
turn one payload record into a bar. Everything else lives here: range
clamping, backward chunk planning, sequential fetching with an inter-chunk
delay, per-status backoff, and write-through to the bar cache.
"""

from __future__ import annotations

import logging
import os
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, timedelta
from enum import StrEnum
from pathlib import Path
from typing import Any

import requests

from barvault.data.bars import dedupe_bars, filter_bars_for_request, sort_bars_chronologically
from barvault.data.cache import DEFAULT_CACHE_TTL, BarCache
from barvault.domain.models import Bar, DataRequest, FetchRange
from barvault.errors import (
    AuthError,
    ConfigurationError,
    MissingApiKeyError,
    ParseError,
    RangeRejectedError,
    RateLimitedError,
    SymbolNotFoundError,
    TransientHttpError,
)
from barvault.utils.time import format_date, utc_now

DEFAULT_CACHE_ROOT = Path("storage") / "datasets" / ".cache"
DEFAULT_REQUEST_DELAY_SECONDS = 1.1
DEFAULT_MAX_NARROWING_STEPS = 60
DEFAULT_TIMEOUT_SECONDS = 30.0


class NonListPayload(StrEnum):
    """What a vendor's structurally unexpected payload means."""

    EMPTY = "empty"
    ERROR = "error"


@dataclass(frozen=True)
class VendorRequest:
    """Fully resolved HTTP GET for one chunk."""

    url: str
    params: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)


def utc_today(now: Callable[[], datetime]) -> date:
    current = now()
    if current.tzinfo is not None:
        current = current.astimezone(UTC)
    return current.date()


def resolve_fetch_range(request: DataRequest, today: date) -> FetchRange:
    """Clamp the request window to today; vendors never have future bars."""
    start = request.start_date()
    end = request.end_date()
    if start is None or end is None:
        raise ConfigurationError(
            f"Invalid date window for {request.symbol}: {request.start!r}..{request.end!r}"
        )
    return FetchRange(start_date=start, end_date=min(end, today))


def plan_chunks(fetch_range: FetchRange, max_chunk_days: int) -> list[FetchRange]:
    """Split a range into windows walked backward from its end date.

    Each window spans at most ``max_chunk_days - 1`` days.
    """
    if max_chunk_days <= 0:
        raise ValueError("max_chunk_days must be positive")
    span = timedelta(days=max_chunk_days - 1)
    chunks: list[FetchRange] = []
    cursor = fetch_range.end_date
    while cursor >= fetch_range.start_date:
        chunk_start = max(fetch_range.start_date, cursor - span)
        chunks.append(FetchRange(start_date=chunk_start, end_date=cursor))
        cursor = chunk_start - timedelta(days=1)
    return chunks


class RemoteBarSource(ABC):
    """Base class for chunked, cached vendor sources."""

    source_id: str = ""
    display_name: str = ""
    api_key_env: str = ""
    default_base_url: str = ""
    default_max_chunk_days: int = 365
    non_list_payload: NonListPayload = NonListPayload.EMPTY

    def __init__(
        self,
        api_key: str | None = None,
        *,
        base_url: str | None = None,
        cache_dir: str | Path | None = None,
        cache_ttl: timedelta = DEFAULT_CACHE_TTL,
        session: Any | None = None,
        now: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
        request_delay: float = DEFAULT_REQUEST_DELAY_SECONDS,
        max_chunk_days: int | None = None,
        max_narrowing_steps: int = DEFAULT_MAX_NARROWING_STEPS,
        max_rate_limit_retries: int | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        if api_key is None:
            api_key = os.getenv(self.api_key_env, "")
        self.api_key = api_key.strip()
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        resolved_cache_dir = (
            Path(cache_dir) if cache_dir is not None else DEFAULT_CACHE_ROOT / self.source_id
        )
        self.cache = BarCache(resolved_cache_dir, ttl=cache_ttl, now=now)
        self.session = session if session is not None else requests.Session()
        self.now = now
        self.sleep = sleep
        self.request_delay = request_delay
        self.max_chunk_days = max_chunk_days or self.default_max_chunk_days
        self.max_narrowing_steps = max_narrowing_steps
        self.max_rate_limit_retries = max_rate_limit_retries
        self.timeout = timeout
        self.logger = logging.getLogger(f"barvault.data.{self.source_id}")

    @abstractmethod
    def build_request(self, request: DataRequest, chunk: FetchRange) -> VendorRequest:
        """Return the HTTP request for one chunk."""

    @abstractmethod
    def extract_records(self, payload: Any) -> list[Any] | None:
        """Return the record list of a payload, or None when it is not one."""

    @abstractmethod
    def to_bar(self, record: Mapping[str, Any], use_adjusted: bool) -> Bar | None:
        """Normalize one vendor record, or None when it lacks required fields."""

    def load_bars(self, request: DataRequest) -> list[Bar]:
        if not request.has_window():
            raise ConfigurationError(
                f"{self.display_name} data requests require start and end dates"
            )
        if not self.api_key:
            raise MissingApiKeyError(
                f"{self.display_name} API key missing. "
                f"Set {self.api_key_env} environment variable."
            )

        fetch_range = resolve_fetch_range(request, utc_today(self.now))
        if fetch_range.is_empty():
            self.logger.info(
                "%s %s window %s..%s is entirely in the future; nothing to fetch",
                request.symbol,
                request.timeframe,
                request.start,
                request.end,
            )
            return []

        cached = self.cache.read_fresh(request.symbol, request.timeframe, request.adjusted)
        if cached is not None:
            self.logger.debug("cache hit | %s %s", request.symbol, request.timeframe)
            return filter_bars_for_request(cached, request)

        fetched = self.fetch_range(request, fetch_range)
        ordered = sort_bars_chronologically(dedupe_bars(fetched))
        try:
            self.cache.write(request.symbol, request.timeframe, request.adjusted, ordered)
        except OSError as exc:
            self.logger.warning(
                "Unable to write cache for %s %s: %s",
                request.symbol,
                request.timeframe,
                exc,
            )
        return filter_bars_for_request(ordered, request)

    def fetch_range(self, request: DataRequest, fetch_range: FetchRange) -> list[Bar]:
        """Fetch every chunk of a range strictly one after another."""
        chunks = plan_chunks(fetch_range, self.max_chunk_days)
        self.logger.info(
            "fetch | %s %s | %s..%s | %s chunk(s)",
            request.symbol,
            request.timeframe,
            format_date(fetch_range.start_date),
            format_date(fetch_range.end_date),
            len(chunks),
        )
        bars: list[Bar] = []
        for index, chunk in enumerate(chunks):
            if index > 0:
                self.sleep(self.request_delay)
            bars.extend(self.fetch_chunk(request, chunk))
        return bars

    def fetch_chunk(self, request: DataRequest, chunk: FetchRange) -> list[Bar]:
        """Fetch one chunk, applying backoff by failure class."""
        window = chunk
        narrowing_steps = 0
        rate_limit_hits = 0
        first_rejection: RangeRejectedError | None = None
        while True:
            vendor_request = self.build_request(request, window)
            try:
                response = self.session.get(
                    vendor_request.url,
                    params=vendor_request.params,
                    headers=vendor_request.headers,
                    timeout=self.timeout,
                )
            except requests.RequestException as exc:
                raise TransientHttpError(
                    f"{self.display_name} request failed: {exc}",
                    vendor=self.source_id,
                ) from exc

            status = int(response.status_code)
            if 200 <= status < 300:
                return self.parse_response(response, request)

            if status == 404:
                raise SymbolNotFoundError(
                    f'Ticker symbol "{request.symbol}" not found on {self.display_name}.'
                )
            if status in {401, 403}:
                raise AuthError(
                    f"{self.display_name} authentication failed. "
                    f"Verify {self.api_key_env} is valid.",
                    vendor=self.source_id,
                    status=status,
                )
            if status == 429:
                rate_limit_hits += 1
                if (
                    self.max_rate_limit_retries is not None
                    and rate_limit_hits > self.max_rate_limit_retries
                ):
                    raise RateLimitedError(
                        f"{self.display_name} rate limit exceeded after "
                        f"{self.max_rate_limit_retries} retries",
                        vendor=self.source_id,
                        status=status,
                    )
                self.logger.warning(
                    "%s rate limit hit for %s (%s..%s). Waiting %ss.",
                    self.display_name,
                    request.symbol,
                    format_date(window.start_date),
                    format_date(window.end_date),
                    self.request_delay,
                )
                self.sleep(self.request_delay)
                continue
            if status == 400:
                if first_rejection is None:
                    first_rejection = RangeRejectedError(
                        f"{self.display_name} rejected {request.symbol} ({request.timeframe}) "
                        f"window {format_date(window.start_date)}..{format_date(window.end_date)}",
                        vendor=self.source_id,
                        status=status,
                    )
                narrowed_end = window.end_date - timedelta(days=1)
                if (
                    narrowing_steps >= self.max_narrowing_steps
                    or narrowed_end < window.start_date
                ):
                    raise first_rejection
                narrowing_steps += 1
                self.logger.warning(
                    "%s rejected %s window ending %s; retrying with end %s",
                    self.display_name,
                    request.symbol,
                    format_date(window.end_date),
                    format_date(narrowed_end),
                )
                window = replace(window, end_date=narrowed_end)
                continue
            raise TransientHttpError(
                f"{self.display_name} request failed with status {status}",
                vendor=self.source_id,
                status=status,
            )

    def parse_response(self, response: Any, request: DataRequest) -> list[Bar]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise ParseError(f"Unable to parse {self.display_name} response: {exc}") from exc

        records = self.extract_records(payload)
        if records is None:
            if self.non_list_payload is NonListPayload.ERROR:
                preview = str(payload)[:200]
                raise ParseError(
                    f"{self.display_name} returned an unexpected payload for "
                    f"{request.symbol}: {preview}"
                )
            return []

        bars: list[Bar] = []
        for record in records:
            if not isinstance(record, Mapping):
                continue
            bar = self.to_bar(record, request.adjusted)
            if bar is not None:
                bars.append(bar)
        return bars
