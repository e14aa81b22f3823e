"""Coverage store interfaces and implementations."""

from .sqlite_store import SqliteCoverageStore
from .store import CoverageStore, InMemoryCoverageStore

__all__ = ["CoverageStore", "InMemoryCoverageStore", "SqliteCoverageStore"]
