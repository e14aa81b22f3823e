from __future__ import annotations

import json
from collections.abc import Callable
from datetime import UTC, datetime
from types import SimpleNamespace
from typing import Any

import pytest


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, text: str | None = None) -> None:
        self.status_code = status_code
        self.text = text if text is not None else json.dumps(body if body is not None else {})

    def json(self) -> Any:
        return json.loads(self.text)


class FakeSession:
    """Records GET calls and replays queued responses; the last one repeats."""

    def __init__(self) -> None:
        self.calls: list[SimpleNamespace] = []
        self._responses: list[FakeResponse] = []
        self.handler: Callable[[str, dict[str, str]], FakeResponse] | None = None

    def queue(self, status_code: int = 200, body: Any = None, text: str | None = None) -> None:
        self._responses.append(FakeResponse(status_code, body, text))

    def get(
        self,
        url: str,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> FakeResponse:
        call = SimpleNamespace(
            url=url,
            params=dict(params or {}),
            headers=dict(headers or {}),
            timeout=timeout,
        )
        self.calls.append(call)
        if self.handler is not None:
            return self.handler(url, call.params)
        if not self._responses:
            raise AssertionError(f"unexpected request to {url}")
        if len(self._responses) > 1:
            return self._responses.pop(0)
        return self._responses[0]


class FakeClock:
    def __init__(self, moment: datetime) -> None:
        self.moment = moment

    def set(self, text: str) -> None:
        self.moment = datetime.fromisoformat(text).replace(tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.moment


@pytest.fixture
def http() -> FakeSession:
    return FakeSession()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 2, 1, tzinfo=UTC))


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def record_sleep(sleeps: list[float]) -> Callable[[float], None]:
    return sleeps.append
