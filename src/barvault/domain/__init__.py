"""Domain models for bar acquisition."""

from .models import (
    INTRADAY_TIMEFRAMES,
    SOURCE_IDS,
    TIMEFRAMES,
    VENDOR_IDS,
    Bar,
    CoverageRecord,
    DataRequest,
    DatasetResult,
    FetchRange,
    SourceId,
    Timeframe,
    VendorId,
    is_intraday,
    normalize_source,
    normalize_timeframe,
)

__all__ = [
    "INTRADAY_TIMEFRAMES",
    "SOURCE_IDS",
    "TIMEFRAMES",
    "VENDOR_IDS",
    "Bar",
    "CoverageRecord",
    "DataRequest",
    "DatasetResult",
    "FetchRange",
    "SourceId",
    "Timeframe",
    "VendorId",
    "is_intraday",
    "normalize_source",
    "normalize_timeframe",
]
