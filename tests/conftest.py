"""Shared fixtures: an in-memory websocket and a mock REST backend."""

import asyncio
import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest
import websockets

from agentstream.adapters.api_client import ApiClient

_CLOSE = object()
_DROP = object()


class FakeWebSocket:
    """The slice of ``ClientConnection`` the session socket uses."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    def push(self, frame: dict[str, Any] | str) -> None:
        self._inbox.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def drop(self) -> None:
        """Simulate the server vanishing without a close handshake."""
        self._inbox.put_nowait(_DROP)

    async def send(self, data: str) -> None:
        if self.closed:
            raise websockets.ConnectionClosedOK(None, None)
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        self.closed = True
        self._inbox.put_nowait(_CLOSE)

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> str:
        item = await self._inbox.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        if item is _DROP:
            self.closed = True
            raise websockets.ConnectionClosedError(None, None)
        return item


class FakeConnector:
    def __init__(self, ws: FakeWebSocket) -> None:
        self.ws = ws
        self.urls: list[str] = []

    async def __call__(self, url: str) -> FakeWebSocket:
        self.urls.append(url)
        return self.ws


async def drain(rounds: int = 5) -> None:
    """Let the listener task process whatever was pushed."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def fake_ws() -> FakeWebSocket:
    return FakeWebSocket()


@pytest.fixture
def connector(fake_ws: FakeWebSocket) -> FakeConnector:
    return FakeConnector(fake_ws)


class MockBackend:
    """Routes requests to handlers keyed by (method, path) and records them."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, path: str, status: int = 200, json: Any = None) -> None:
        self.routes[(method, path)] = lambda request: httpx.Response(status, json=json)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"error": f"No route for {request.url.path}"})
        return handler(request)


@pytest.fixture
def backend() -> MockBackend:
    return MockBackend()


@pytest.fixture
def api(backend: MockBackend) -> ApiClient:
    return ApiClient("http://backend.test", transport=httpx.MockTransport(backend))
