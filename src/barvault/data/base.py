"""Bar source contract."""

from __future__ import annotations

from typing import Protocol

from barvault.domain.models import Bar, DataRequest


class BarSource(Protocol):
    """Interface shared by the local file source and remote vendors."""

    source_id: str

    def load_bars(self, request: DataRequest) -> list[Bar]:
        """Return bars for the request window in ascending order."""
