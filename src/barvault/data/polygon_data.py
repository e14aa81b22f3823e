"""Polygon aggregates market data source."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

import pandas as pd

from barvault.data.bars import to_number
from barvault.data.remote import NonListPayload, RemoteBarSource, VendorRequest
from barvault.domain.models import Bar, DataRequest, FetchRange
from barvault.utils.time import format_date, format_timestamp

DEFAULT_BASE_URL = "https://api.polygon.io"
RESULT_LIMIT = 50000

RANGE_CONFIG: dict[str, tuple[int, str]] = {
    "1d": (1, "day"),
    "1h": (1, "hour"),
    "15m": (15, "minute"),
    "1m": (1, "minute"),
}


def polygon_endpoint(
    base_url: str,
    symbol: str,
    timeframe: str,
    chunk: FetchRange,
) -> str:
    multiplier, timespan = RANGE_CONFIG.get(timeframe, (1, "minute"))
    ticker = quote(symbol.strip().upper(), safe="")
    return (
        f"{base_url}/v2/aggs/ticker/{ticker}/range/{multiplier}/{timespan}/"
        f"{format_date(chunk.start_date)}/{format_date(chunk.end_date)}"
    )


def build_polygon_request(
    base_url: str,
    api_key: str,
    request: DataRequest,
    chunk: FetchRange,
) -> VendorRequest:
    return VendorRequest(
        url=polygon_endpoint(base_url, request.symbol, request.timeframe, chunk),
        params={
            "adjusted": "true" if request.adjusted else "false",
            "sort": "asc",
            "limit": str(RESULT_LIMIT),
        },
        headers={"Authorization": f"Bearer {api_key}"},
    )


def polygon_record_to_bar(record: Mapping[str, Any]) -> Bar | None:
    """Convert one aggregate (epoch-millisecond ``t``) into a bar."""
    millis = to_number(record.get("t"))
    if millis is None:
        return None
    try:
        stamp = pd.Timestamp(int(millis), unit="ms", tz="UTC")
    except (ValueError, OverflowError):
        return None

    open_ = to_number(record.get("o"))
    high = to_number(record.get("h"))
    low = to_number(record.get("l"))
    close = to_number(record.get("c"))
    volume = to_number(record.get("v"))
    if volume is None:
        volume = to_number(record.get("av"))
    if open_ is None or high is None or low is None or close is None or volume is None:
        return None
    return Bar(
        timestamp=format_timestamp(stamp),
        open=open_,
        high=high,
        low=low,
        close=close,
        volume=volume,
    )


class PolygonSource(RemoteBarSource):
    """Polygon Aggregates API backed data source.

    Polygon wraps bars in an object. A window without data is reported with
    ``resultsCount == 0``; any other payload lacking a ``results`` list is a
    parse error rather than an empty series.
    """

    source_id = "polygon"
    display_name = "Polygon"
    api_key_env = "POLYGON_API_KEY"
    default_base_url = DEFAULT_BASE_URL
    default_max_chunk_days = 30
    non_list_payload = NonListPayload.ERROR

    def build_request(self, request: DataRequest, chunk: FetchRange) -> VendorRequest:
        return build_polygon_request(self.base_url, self.api_key, request, chunk)

    def extract_records(self, payload: Any) -> list[Any] | None:
        if not isinstance(payload, dict):
            return None
        results = payload.get("results")
        if isinstance(results, list):
            return results
        if results is None and payload.get("resultsCount") == 0:
            return []
        return None

    def to_bar(self, record: Mapping[str, Any], use_adjusted: bool) -> Bar | None:
        # Adjustment is applied server-side through the ``adjusted`` query flag.
        return polygon_record_to_bar(record)
