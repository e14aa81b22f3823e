"""Bar source implementations."""

from .base import BarSource
from .cache import BarCache, cache_path
from .csv_data import CsvBarSource, dataset_filename, write_dataset_csv
from .polygon_data import PolygonSource
from .remote import NonListPayload, RemoteBarSource, plan_chunks, resolve_fetch_range
from .tiingo_data import TiingoSource

__all__ = [
    "BarSource",
    "BarCache",
    "cache_path",
    "CsvBarSource",
    "dataset_filename",
    "write_dataset_csv",
    "NonListPayload",
    "RemoteBarSource",
    "plan_chunks",
    "resolve_fetch_range",
    "PolygonSource",
    "TiingoSource",
]
