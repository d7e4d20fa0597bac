from __future__ import annotations

import asyncio
import copy
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import aiohttp
import pytest

DISCOVERY_DOC: dict[str, Any] = {
    "endpoints": {
        "v1": {
            "version": "1.0.0",
            "signalk-http": "http://cloud.test/signalk/v1/api",
            "signalk-ws": "ws://cloud.test/signalk/v1/stream",
        }
    }
}


class FakeBus:
    """In-memory stand-in for the local server's subscription manager."""

    def __init__(self, values: dict[str, Any] | None = None) -> None:
        self.values: dict[str, Any] = dict(values or {})
        self.subscriptions: list[dict[str, Any]] = []
        self.handled: list[tuple[str, dict[str, Any]]] = []
        self.statuses: list[tuple[str, str]] = []
        self._listeners: list[dict[str, Any]] = []

    def get_self_path(self, path: str) -> Any:
        return copy.deepcopy(self.values.get(path))

    def subscribe(
        self,
        subscription: dict[str, Any],
        unsubscribes: list[Callable[[], None]],
        on_error: Callable[[Any], None],
        on_delta: Callable[[dict[str, Any]], None],
    ) -> None:
        listener = {"subscription": subscription, "on_delta": on_delta, "active": True}
        self.subscriptions.append(subscription)
        self._listeners.append(listener)

        def unsubscribe() -> None:
            listener["active"] = False

        unsubscribes.append(unsubscribe)

    def handle_message(self, provider_id: str, delta: dict[str, Any]) -> None:
        self.handled.append((provider_id, delta))

    def set_provider_status(self, message: str, kind: str) -> None:
        self.statuses.append((message, kind))

    @property
    def active_subscriptions(self) -> int:
        return sum(1 for listener in self._listeners if listener["active"])

    def emit(self, delta: dict[str, Any]) -> None:
        for listener in list(self._listeners):
            if listener["active"]:
                listener["on_delta"](copy.deepcopy(delta))


@dataclass
class _Msg:
    type: aiohttp.WSMsgType
    data: Any


class FakeWebSocket:
    def __init__(self, url: str, headers: dict[str, str]) -> None:
        self.url = url
        self.headers = headers
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self.fail_sends = False
        self._incoming: asyncio.Queue[_Msg | None] = asyncio.Queue()

    def feed(self, message: Any) -> None:
        text = message if isinstance(message, str) else json.dumps(message)
        self._incoming.put_nowait(_Msg(aiohttp.WSMsgType.TEXT, text))

    def server_close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)

    async def send_str(self, data: str) -> None:
        if self.fail_sends:
            raise ConnectionResetError("Cannot write to closing transport")
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._incoming.put_nowait(None)

    def exception(self) -> BaseException | None:
        return None

    def __aiter__(self) -> FakeWebSocket:
        return self

    async def __anext__(self) -> _Msg:
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item


class _FakeResponse:
    def __init__(self, status: int, text: str) -> None:
        self.status = status
        self._text = text

    async def __aenter__(self) -> _FakeResponse:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None

    async def text(self) -> str:
        return self._text


@dataclass
class FakeHttp:
    """Fake aiohttp session serving discovery documents and websockets."""

    discovery: dict[str, tuple[int, str] | BaseException] = field(default_factory=dict)
    connect_errors: dict[str, BaseException] = field(default_factory=dict)
    gets: list[str] = field(default_factory=list)
    sockets: list[FakeWebSocket] = field(default_factory=list)

    def serve(self, base_url: str, status: int = 200, body: Any = None) -> None:
        text = body if isinstance(body, str) else json.dumps(DISCOVERY_DOC if body is None else body)
        self.discovery[f"{base_url.rstrip('/')}/signalk"] = (status, text)

    def get(self, url: str, **_kwargs: Any) -> _FakeResponse:
        self.gets.append(url)
        entry = self.discovery.get(url)
        if entry is None:
            raise aiohttp.ClientConnectionError(f"Cannot connect to host {url}")
        if isinstance(entry, BaseException):
            raise entry
        status, text = entry
        return _FakeResponse(status, text)

    async def ws_connect(self, url: str, *, headers: dict[str, str] | None = None, **_kwargs: Any) -> FakeWebSocket:
        for prefix, error in self.connect_errors.items():
            if url.startswith(prefix):
                raise error
        ws = FakeWebSocket(url, dict(headers or {}))
        self.sockets.append(ws)
        return ws

    def sockets_for(self, prefix: str) -> list[FakeWebSocket]:
        return [ws for ws in self.sockets if ws.url.startswith(prefix)]


Settle = Callable[..., Awaitable[None]]


async def _settle(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


@pytest.fixture
def bus() -> FakeBus:
    return FakeBus(
        {
            "name": {"value": "Sea Fox", "timestamp": "2026-01-01T00:00:00Z"},
            "mmsi": "230123456",
            "design.length": {"value": {"overall": 11.2}},
            "navigation.position": {"value": {"latitude": 60.15, "longitude": 24.95}},
        }
    )


@pytest.fixture
def http() -> FakeHttp:
    return FakeHttp()


@pytest.fixture
def settle() -> Settle:
    return _settle
