from __future__ import annotations

import json
from collections import deque
from typing import Any

import httpx
import pytest

from trusera_sdk.client import TruseraClient
from trusera_sdk.transport import transport_slot

TEST_API_KEY = "tsk_test123"


class FakeTransport:
    """Stands in for the real HTTP transport and records every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[Any, dict[str, Any]]] = []
        self._queued: deque[httpx.Response | Exception] = deque()

    def queue(self, *items: httpx.Response | Exception) -> None:
        self._queued.extend(items)

    async def __call__(self, resource: Any, **init: Any) -> httpx.Response:
        self.calls.append((resource, init))
        item = self._queued.popleft() if self._queued else httpx.Response(200, json={"accepted": True})
        if isinstance(item, Exception):
            raise item
        return item

    def urls(self) -> list[str]:
        return [str(resource.url) if isinstance(resource, httpx.Request) else str(resource) for resource, _ in self.calls]

    def json_body(self, index: int) -> Any:
        return json.loads(self.calls[index][1]["content"])


@pytest.fixture()
def fake_transport(monkeypatch: pytest.MonkeyPatch) -> FakeTransport:
    fake = FakeTransport()
    monkeypatch.setattr(transport_slot(), "_active", fake)
    return fake


@pytest.fixture()
def make_client():
    def _make(**options: Any) -> TruseraClient:
        options.setdefault("flush_interval", 999_999)
        return TruseraClient(TEST_API_KEY, **options)

    return _make
