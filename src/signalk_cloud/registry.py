"""Registry of configured endpoints and their connections."""

from __future__ import annotations

from collections.abc import Iterator

from signalk_cloud.connection import EndpointConnection
from signalk_cloud.exceptions import RelayConfigError


class EndpointRegistry:
    """Connections keyed by endpoint URL."""

    def __init__(self) -> None:
        self._connections: dict[str, EndpointConnection] = {}

    def __iter__(self) -> Iterator[EndpointConnection]:
        return iter(list(self._connections.values()))

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, url: object) -> bool:
        return url in self._connections

    def add(self, connection: EndpointConnection) -> None:
        if connection.url in self._connections:
            raise RelayConfigError(f"duplicate endpoint url: {connection.url}")
        self._connections[connection.url] = connection

    def get(self, url: str) -> EndpointConnection | None:
        return self._connections.get(url)

    def start_all(self) -> None:
        for connection in self:
            connection.start()

    async def stop_all(self) -> None:
        for connection in self:
            await connection.stop()

    async def clear(self) -> None:
        await self.stop_all()
        self._connections.clear()

    @property
    def armed_retry_timers(self) -> int:
        return sum(1 for c in self if c.state.retry_timer is not None)

    @property
    def open_transports(self) -> int:
        return sum(1 for c in self if c.state.transport is not None)
