"""Tiingo market data source."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

from barvault.data.bars import to_number
from barvault.data.remote import NonListPayload, RemoteBarSource, VendorRequest
from barvault.domain.models import Bar, DataRequest, FetchRange, is_intraday
from barvault.utils.time import format_date, format_timestamp, parse_timestamp

DEFAULT_BASE_URL = "https://api.tiingo.com"

RESAMPLE_FREQUENCIES = {
    "1d": "daily",
    "1h": "1hour",
    "15m": "15min",
    "1m": "1min",
}


def tiingo_endpoint(base_url: str, symbol: str, timeframe: str) -> str:
    """Daily bars come from the end-of-day API, intraday bars from IEX."""
    ticker = quote(symbol.strip(), safe="")
    if is_intraday(timeframe):
        return f"{base_url}/iex/{ticker}/prices"
    return f"{base_url}/tiingo/daily/{ticker}/prices"


def build_tiingo_request(
    base_url: str,
    api_key: str,
    request: DataRequest,
    chunk: FetchRange,
) -> VendorRequest:
    params = {
        "startDate": format_date(chunk.start_date),
        "endDate": format_date(chunk.end_date),
        "format": "json",
        "resampleFreq": RESAMPLE_FREQUENCIES.get(request.timeframe, "daily"),
        "adjusted": "true" if request.adjusted else "false",
    }
    return VendorRequest(
        url=tiingo_endpoint(base_url, request.symbol, request.timeframe),
        params=params,
        headers={"Authorization": f"Token {api_key}"},
    )


def tiingo_record_to_bar(record: Mapping[str, Any], use_adjusted: bool) -> Bar | None:
    """Prefer adjusted fields when requested, falling back to raw fields per field."""
    raw_timestamp = record.get("date")
    if not isinstance(raw_timestamp, str):
        raw_timestamp = record.get("timestamp")
    stamp = parse_timestamp(raw_timestamp)
    if stamp is None:
        return None

    def pick(primary_key: str, adjusted_key: str) -> float | None:
        if use_adjusted:
            adjusted_value = to_number(record.get(adjusted_key))
            if adjusted_value is not None:
                return adjusted_value
        return to_number(record.get(primary_key))

    open_ = pick("open", "adjOpen")
    high = pick("high", "adjHigh")
    low = pick("low", "adjLow")
    close = pick("close", "adjClose")
    volume = pick("volume", "adjVolume")
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


class TiingoSource(RemoteBarSource):
    """Load OHLCV bars from Tiingo's REST API with local caching.

    Tiingo answers an empty window with an empty list, and occasionally with a
    bare object; both are read as zero bars.
    """

    source_id = "tiingo"
    display_name = "Tiingo"
    api_key_env = "TIINGO_API_KEY"
    default_base_url = DEFAULT_BASE_URL
    default_max_chunk_days = 365
    non_list_payload = NonListPayload.EMPTY

    def build_request(self, request: DataRequest, chunk: FetchRange) -> VendorRequest:
        return build_tiingo_request(self.base_url, self.api_key, request, chunk)

    def extract_records(self, payload: Any) -> list[Any] | None:
        return payload if isinstance(payload, list) else None

    def to_bar(self, record: Mapping[str, Any], use_adjusted: bool) -> Bar | None:
        return tiingo_record_to_bar(record, use_adjusted)
