"""High-level relay between the local Signal K server and cloud endpoints."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import aiohttp

from signalk_cloud.bus import LocalBus, StatusSink
from signalk_cloud.config import RelayConfig
from signalk_cloud.connection import EndpointConnection
from signalk_cloud.exceptions import CloudRelayError
from signalk_cloud.registry import EndpointRegistry
from signalk_cloud.status import EndpointStatus, StatusKind
from signalk_cloud.store import ConfigStore
from signalk_cloud.vessel import OwnVessel

_logger = logging.getLogger(__name__)


class CloudRelay:
    """Relays deltas between a local bus and every configured endpoint.

    Usage::

        async with CloudRelay(config, bus, store=store) as relay:
            relay.start()
            ...
    """

    def __init__(
        self,
        config: RelayConfig,
        bus: LocalBus,
        *,
        store: ConfigStore | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._config = config
        self._bus = bus
        self._store = store
        self._external_session = session is not None
        self._http_session = session
        self._vessel = OwnVessel(config.self_id)
        self._registry = EndpointRegistry()
        self._running = False

    @classmethod
    def from_store(
        cls,
        store: ConfigStore,
        bus: LocalBus,
        *,
        session: aiohttp.ClientSession | None = None,
        **overrides: Any,
    ) -> CloudRelay:
        """Build a relay from options persisted in *store*."""
        config = RelayConfig.from_options(store.load(), **overrides)
        return cls(config, bus, store=store, session=session)

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> CloudRelay:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> RelayConfig:
        return self._config

    @property
    def registry(self) -> EndpointRegistry:
        return self._registry

    @property
    def vessel(self) -> OwnVessel:
        return self._vessel

    @property
    def is_running(self) -> bool:
        return self._running

    def connection(self, url: str) -> EndpointConnection | None:
        return self._registry.get(url)

    # ------------------------------------------------------------------
    # Start / stop
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Create a connection per endpoint and start the enabled ones."""
        if self._running:
            return
        if self._http_session is None:
            raise CloudRelayError("Relay not initialized. Use 'async with CloudRelay(...) as relay:'")
        if not self._config.endpoints:
            _logger.warning("no cloud endpoints configured")

        for endpoint in self._config.endpoints:
            if endpoint.url not in self._registry:
                self._registry.add(
                    EndpointConnection(
                        endpoint,
                        relay_config=self._config,
                        http=self._http_session,
                        bus=self._bus,
                        vessel=self._vessel,
                        on_status=self._on_status,
                        on_credential=self._on_credential,
                    )
                )
        self._running = True
        self._registry.start_all()

    async def stop(self) -> None:
        """Stop every endpoint. Safe to call repeatedly."""
        self._running = False
        await self._registry.stop_all()

    async def reload(self, options: Mapping[str, Any]) -> None:
        """Replace the configuration and restart all endpoints."""
        config = RelayConfig.from_options(options)
        await self._registry.clear()
        self._running = False
        self._config = config
        if config.self_id != self._vessel.self_id:
            self._vessel = OwnVessel(config.self_id)
        self.start()

    # ------------------------------------------------------------------
    # Status and credentials
    # ------------------------------------------------------------------

    def status_message(self) -> str:
        """Latest status of every endpoint, one per line."""
        lines = []
        for connection in self._registry:
            status = str(connection.state.status)
            if status:
                lines.append(status if len(self._registry) == 1 else f"{connection.url}: {status}")
        return "\n".join(lines)

    def status_kind(self) -> StatusKind:
        """``error`` while any endpoint reports an error."""
        if any(c.state.status.kind is StatusKind.ERROR for c in self._registry):
            return StatusKind.ERROR
        return StatusKind.NORMAL

    def _on_status(self, _status: EndpointStatus) -> None:
        if isinstance(self._bus, StatusSink):
            self._bus.set_provider_status(self.status_message(), str(self.status_kind()))

    def _on_credential(self, connection: EndpointConnection, _token: str) -> None:
        if self._store is None:
            _logger.warning("credential received from %s but no config store to persist it", connection.url)
            return
        try:
            self._store.save(self._config.to_options())
        except (OSError, CloudRelayError):
            _logger.error("persisting credential for %s failed", connection.url, exc_info=True)
