"""Coverage store contract used by the resolver."""

from __future__ import annotations

from typing import Protocol

from barvault.domain.models import CoverageRecord


class CoverageStore(Protocol):
    """Persistence API for dataset coverage records."""

    def get_coverage(self, symbol: str, timeframe: str) -> CoverageRecord | None:
        """Return the coverage record for a series, if any."""

    def save_coverage(self, record: CoverageRecord) -> None:
        """Insert or replace the record for the record's series."""

    def list_coverage(self, symbol: str | None = None) -> list[CoverageRecord]:
        """Return stored records, optionally for one symbol."""

    def close(self) -> None:
        """Close persistence resources."""


class InMemoryCoverageStore:
    """Dict-backed store for tests and one-off runs."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], CoverageRecord] = {}

    def get_coverage(self, symbol: str, timeframe: str) -> CoverageRecord | None:
        return self._records.get((symbol.upper(), timeframe))

    def save_coverage(self, record: CoverageRecord) -> None:
        self._records[(record.symbol.upper(), record.timeframe)] = record

    def list_coverage(self, symbol: str | None = None) -> list[CoverageRecord]:
        records = sorted(self._records.values(), key=lambda item: (item.symbol, item.timeframe))
        if symbol is None:
            return records
        return [record for record in records if record.symbol.upper() == symbol.upper()]

    def close(self) -> None:
        return None
