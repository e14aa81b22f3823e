"""Tests for the Tiingo source and the shared remote fetch loop."""

from __future__ import annotations

import json
from datetime import date, timedelta
from pathlib import Path
from typing import Any

import pytest
import requests

from barvault.data.remote import plan_chunks, resolve_fetch_range
from barvault.data.tiingo_data import TiingoSource, build_tiingo_request, tiingo_record_to_bar
from barvault.domain.models import DataRequest, FetchRange
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


def _record(day: str, close: float = 10.0) -> dict[str, Any]:
    return {
        "date": f"{day}T00:00:00.000Z",
        "open": close - 1,
        "high": close + 1,
        "low": close - 2,
        "close": close,
        "volume": 1000,
        "adjOpen": close - 1,
        "adjHigh": close + 1,
        "adjLow": close - 2,
        "adjClose": close,
        "adjVolume": 1000,
    }


def _source(tmp_path: Path, http, clock, sleeps, **kwargs: Any) -> TiingoSource:
    options: dict[str, Any] = {
        "cache_dir": tmp_path / "cache",
        "session": http,
        "now": clock,
        "sleep": sleeps.append,
        "request_delay": 0.0,
    }
    options.update(kwargs)
    return TiingoSource("test-key", **options)


def test_fetch_returns_bars_and_writes_cache(tmp_path: Path, http, clock, sleeps) -> None:
    http.queue(200, [_record("2024-01-03", 11), _record("2024-01-02", 10)])
    source = _source(tmp_path, http, clock, sleeps)

    bars = source.load_bars(DataRequest(symbol="AAPL", start="2024-01-01", end="2024-01-05"))

    assert [bar.timestamp for bar in bars] == [
        "2024-01-02T00:00:00.000Z",
        "2024-01-03T00:00:00.000Z",
    ]
    assert len(http.calls) == 1
    assert http.calls[0].url == "https://api.tiingo.com/tiingo/daily/AAPL/prices"
    assert http.calls[0].headers == {"Authorization": "Token test-key"}
    assert http.calls[0].timeout == 30.0
    cached = json.loads((tmp_path / "cache" / "aapl_1d_adj.json").read_text(encoding="utf-8"))
    assert len(cached["bars"]) == 2


def test_fresh_cache_serves_any_window_without_requests(
    tmp_path: Path, http, clock, sleeps
) -> None:
    http.queue(200, [_record("2024-01-02"), _record("2024-01-10"), _record("2024-01-20")])
    source = _source(tmp_path, http, clock, sleeps)
    source.load_bars(DataRequest(symbol="AAPL", start="2024-01-01", end="2024-01-31"))

    clock.moment += timedelta(minutes=30)
    bars = source.load_bars(DataRequest(symbol="AAPL", start="2024-01-05", end="2024-01-15"))

    assert len(http.calls) == 1
    assert [bar.timestamp for bar in bars] == ["2024-01-10T00:00:00.000Z"]


def test_stale_cache_is_refetched(tmp_path: Path, http, clock, sleeps) -> None:
    http.queue(200, [_record("2024-01-02")])
    source = _source(tmp_path, http, clock, sleeps)
    request = DataRequest(symbol="AAPL", start="2024-01-01", end="2024-01-05")
    source.load_bars(request)
    cache_file = tmp_path / "cache" / "aapl_1d_adj.json"
    first_fetched_at = json.loads(cache_file.read_text(encoding="utf-8"))["fetchedAt"]

    clock.moment += timedelta(hours=2)
    source.load_bars(request)

    assert len(http.calls) == 2
    assert json.loads(cache_file.read_text(encoding="utf-8"))["fetchedAt"] != first_fetched_at


def test_future_end_date_is_clamped_to_today(tmp_path: Path, http, clock, sleeps) -> None:
    http.queue(200, [])
    source = _source(tmp_path, http, clock, sleeps)

    source.load_bars(DataRequest(symbol="AAPL", start="2024-01-25", end="2024-03-01"))

    assert http.calls[0].params["startDate"] == "2024-01-25"
    assert http.calls[0].params["endDate"] == "2024-02-01"


def test_window_entirely_in_future_makes_no_requests(
    tmp_path: Path, http, clock, sleeps
) -> None:
    source = _source(tmp_path, http, clock, sleeps)

    bars = source.load_bars(DataRequest(symbol="AAPL", start="2024-03-01", end="2024-03-05"))

    assert bars == []
    assert http.calls == []


def test_range_is_chunked_backward_with_delay_between_chunks(
    tmp_path: Path, http, clock, sleeps
) -> None:
    clock.set("2024-03-01T00:00:00")
    http.queue(200, [])
    source = _source(tmp_path, http, clock, sleeps, max_chunk_days=10, request_delay=10)

    source.load_bars(DataRequest(symbol="AAPL", start="2024-01-01", end="2024-02-15"))

    assert len(http.calls) == 5
    assert http.calls[0].params["startDate"] == "2024-02-06"
    assert http.calls[0].params["endDate"] == "2024-02-15"
    assert http.calls[-1].params["startDate"] == "2024-01-01"
    assert http.calls[-1].params["endDate"] == "2024-01-06"
    assert sleeps == [10] * 4


def test_rate_limit_waits_and_retries_same_chunk(tmp_path: Path, http, clock, sleeps) -> None:
    http.queue(429, {"detail": "slow down"})
    http.queue(200, [_record("2024-01-02")])
    source = _source(tmp_path, http, clock, sleeps, request_delay=15)

    bars = source.load_bars(DataRequest(symbol="AAPL", start="2024-01-01", end="2024-01-05"))

    assert len(bars) == 1
    assert sleeps == [15]
    assert len(http.calls) == 2
    assert http.calls[0].params == http.calls[1].params


def test_rate_limit_cap_raises(tmp_path: Path, http, clock, sleeps) -> None:
    http.queue(429, {})
    source = _source(tmp_path, http, clock, sleeps, max_rate_limit_retries=2)

    with pytest.raises(RateLimitedError):
        source.load_bars(DataRequest(symbol="AAPL", start="2024-01-01", end="2024-01-05"))

    assert len(http.calls) == 3


def test_rejected_range_narrows_end_date(tmp_path: Path, http, clock, sleeps) -> None:
    clock.set("2025-02-01T00:00:00")
    http.queue(400, {"detail": "bad range"})
    http.queue(200, [_record("2025-01-10")])
    source = _source(tmp_path, http, clock, sleeps)

    bars = source.load_bars(DataRequest(symbol="AAPL", start="2025-01-01", end="2025-01-15"))

    assert len(bars) == 1
    assert [call.params["endDate"] for call in http.calls] == ["2025-01-15", "2025-01-14"]
    assert sleeps == []


def test_narrowing_exhaustion_reraises_first_rejection(
    tmp_path: Path, http, clock, sleeps
) -> None:
    clock.set("2025-02-01T00:00:00")
    http.queue(400, {})
    source = _source(tmp_path, http, clock, sleeps, max_narrowing_steps=2)

    with pytest.raises(RangeRejectedError, match="2025-01-01..2025-01-15") as excinfo:
        source.load_bars(DataRequest(symbol="AAPL", start="2025-01-01", end="2025-01-15"))

    assert excinfo.value.status == 400
    assert len(http.calls) == 3


def test_narrowing_stops_when_window_collapses(tmp_path: Path, http, clock, sleeps) -> None:
    http.queue(400, {})
    source = _source(tmp_path, http, clock, sleeps)

    with pytest.raises(RangeRejectedError):
        source.load_bars(DataRequest(symbol="AAPL", start="2024-01-05", end="2024-01-05"))

    assert len(http.calls) == 1


@pytest.mark.parametrize(
    ("status", "error"),
    [
        (404, SymbolNotFoundError),
        (401, AuthError),
        (403, AuthError),
        (500, TransientHttpError),
        (503, TransientHttpError),
    ],
)
def test_status_failures_raise_without_retry(
    tmp_path: Path, http, clock, sleeps, status: int, error: type[Exception]
) -> None:
    http.queue(status, {"detail": "nope"})
    source = _source(tmp_path, http, clock, sleeps)

    with pytest.raises(error):
        source.load_bars(DataRequest(symbol="AAPL", start="2024-01-01", end="2024-01-05"))

    assert len(http.calls) == 1
    assert sleeps == []


def test_transport_failure_is_transient(tmp_path: Path, http, clock, sleeps) -> None:
    def boom(url: str, params: dict[str, str]) -> Any:
        raise requests.ConnectionError("connection reset")

    http.handler = boom
    source = _source(tmp_path, http, clock, sleeps)

    with pytest.raises(TransientHttpError, match="connection reset"):
        source.load_bars(DataRequest(symbol="AAPL", start="2024-01-01", end="2024-01-05"))


def test_missing_api_key_raises_before_any_request(
    tmp_path: Path, http, clock, sleeps, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("TIINGO_API_KEY", raising=False)
    source = TiingoSource(cache_dir=tmp_path, session=http, now=clock)

    with pytest.raises(MissingApiKeyError, match="TIINGO_API_KEY"):
        source.load_bars(DataRequest(symbol="AAPL", start="2024-01-01", end="2024-01-05"))

    assert http.calls == []


def test_api_key_falls_back_to_environment(
    tmp_path: Path, http, clock, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("TIINGO_API_KEY", " env-key ")
    http.queue(200, [])
    source = TiingoSource(cache_dir=tmp_path, session=http, now=clock)

    source.load_bars(DataRequest(symbol="AAPL", start="2024-01-01", end="2024-01-05"))

    assert http.calls[0].headers["Authorization"] == "Token env-key"


def test_request_without_window_is_rejected(tmp_path: Path, http, clock, sleeps) -> None:
    source = _source(tmp_path, http, clock, sleeps)

    with pytest.raises(ConfigurationError, match="start and end dates"):
        source.load_bars(DataRequest(symbol="AAPL", start="2024-01-01"))


def test_unparsable_body_is_parse_error(tmp_path: Path, http, clock, sleeps) -> None:
    http.queue(200, text="<html>gateway</html>")
    source = _source(tmp_path, http, clock, sleeps)

    with pytest.raises(ParseError):
        source.load_bars(DataRequest(symbol="AAPL", start="2024-01-01", end="2024-01-05"))


def test_non_list_payload_reads_as_no_bars(tmp_path: Path, http, clock, sleeps) -> None:
    http.queue(200, {"detail": "no data"})
    source = _source(tmp_path, http, clock, sleeps)

    bars = source.load_bars(DataRequest(symbol="AAPL", start="2024-01-01", end="2024-01-05"))

    assert bars == []


def test_records_missing_fields_are_dropped(tmp_path: Path, http, clock, sleeps) -> None:
    broken = _record("2024-01-03")
    del broken["close"]
    del broken["adjClose"]
    http.queue(200, [_record("2024-01-02"), broken, "junk", {"date": "nope"}])
    source = _source(tmp_path, http, clock, sleeps)

    bars = source.load_bars(DataRequest(symbol="AAPL", start="2024-01-01", end="2024-01-05"))

    assert [bar.timestamp for bar in bars] == ["2024-01-02T00:00:00.000Z"]


def test_adjusted_values_fall_back_to_raw_per_field() -> None:
    record = {
        "date": "2024-01-02",
        "open": 10,
        "high": 12,
        "low": 9,
        "close": 11,
        "volume": 500,
        "adjClose": 5.5,
    }

    adjusted = tiingo_record_to_bar(record, use_adjusted=True)
    raw = tiingo_record_to_bar(record, use_adjusted=False)

    assert adjusted is not None and raw is not None
    assert adjusted.close == 5.5
    assert adjusted.open == 10.0
    assert adjusted.volume == 500.0
    assert raw.close == 11.0
    assert adjusted.timestamp == "2024-01-02T00:00:00.000Z"


def test_intraday_requests_use_iex_endpoint() -> None:
    request = DataRequest(symbol="aapl", timeframe="1h", start="2024-01-01", end="2024-01-05")
    chunk = FetchRange(date(2024, 1, 1), date(2024, 1, 5))

    vendor_request = build_tiingo_request("https://api.tiingo.com", "k", request, chunk)

    assert vendor_request.url == "https://api.tiingo.com/iex/aapl/prices"
    assert vendor_request.params["resampleFreq"] == "1hour"
    assert vendor_request.params["startDate"] == "2024-01-01"
    assert vendor_request.params["endDate"] == "2024-01-05"


def test_unadjusted_request_is_flagged() -> None:
    request = DataRequest(symbol="SPY", start="2024-01-01", end="2024-01-05", adjusted=False)
    chunk = FetchRange(date(2024, 1, 1), date(2024, 1, 5))

    vendor_request = build_tiingo_request("https://api.tiingo.com", "k", request, chunk)

    assert vendor_request.url == "https://api.tiingo.com/tiingo/daily/SPY/prices"
    assert vendor_request.params["adjusted"] == "false"
    assert vendor_request.params["resampleFreq"] == "daily"


def test_plan_chunks_walks_backward_from_end() -> None:
    chunks = plan_chunks(FetchRange(date(2024, 1, 1), date(2024, 1, 25)), max_chunk_days=10)

    assert chunks == [
        FetchRange(date(2024, 1, 16), date(2024, 1, 25)),
        FetchRange(date(2024, 1, 6), date(2024, 1, 15)),
        FetchRange(date(2024, 1, 1), date(2024, 1, 5)),
    ]
    assert plan_chunks(FetchRange(date(2024, 1, 5), date(2024, 1, 1)), 10) == []
    with pytest.raises(ValueError):
        plan_chunks(FetchRange(date(2024, 1, 1), date(2024, 1, 2)), 0)


def test_resolve_fetch_range_clamps_end() -> None:
    request = DataRequest(symbol="SPY", start="2024-03-01", end="2024-03-10")

    fetch_range = resolve_fetch_range(request, today=date(2024, 2, 1))

    assert fetch_range == FetchRange(date(2024, 3, 1), date(2024, 2, 1))
    assert fetch_range.is_empty()


def test_unwritable_cache_still_returns_bars(tmp_path: Path, http, clock, sleeps) -> None:
    blocker = tmp_path / "cache"
    blocker.write_text("not a directory", encoding="utf-8")
    http.queue(200, [_record("2024-01-02")])
    source = _source(tmp_path, http, clock, sleeps, cache_dir=blocker / "tiingo")

    bars = source.load_bars(DataRequest(symbol="AAPL", start="2024-01-01", end="2024-01-05"))

    assert [bar.timestamp for bar in bars] == ["2024-01-02T00:00:00.000Z"]
    assert blocker.read_text(encoding="utf-8") == "not a directory"
