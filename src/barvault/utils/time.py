"""Small time helpers shared by sources and the coverage resolver."""

from __future__ import annotations

from datetime import UTC, date, datetime

import pandas as pd


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(tz=UTC)


def utc_now_iso() -> str:
    """Return current UTC time as an ISO-8601 string."""
    return utc_now().isoformat()


def parse_timestamp(value: object) -> pd.Timestamp | None:
    """Parse date/time text into a UTC timestamp.

    Naive values are read as UTC. Returns None for empty or unparsable input.
    """
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    try:
        parsed = pd.Timestamp(text)
    except (ValueError, TypeError, OverflowError):
        return None
    if parsed is pd.NaT or pd.isna(parsed):
        return None
    if parsed.tzinfo is None:
        return parsed.tz_localize("UTC")
    return parsed.tz_convert("UTC")


def parse_date(value: object) -> date | None:
    """Parse text into a UTC calendar date."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    return parsed.date()


def format_timestamp(value: pd.Timestamp | datetime) -> str:
    """Format a timestamp as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC."""
    stamp = pd.Timestamp(value)
    if stamp.tzinfo is None:
        stamp = stamp.tz_localize("UTC")
    else:
        stamp = stamp.tz_convert("UTC")
    millis = stamp.microsecond // 1000
    return f"{stamp.strftime('%Y-%m-%dT%H:%M:%S')}.{millis:03d}Z"


def format_date(value: date) -> str:
    return value.strftime("%Y-%m-%d")
