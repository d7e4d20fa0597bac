"""Connection lifecycle for one cloud endpoint.

Each endpoint walks ``IDLE -> DISCOVERING -> CONNECTING -> SUBSCRIBING ->
STREAMING -> CLOSING -> IDLE``. Any failure on the way, and any close of an
established stream, arms a fixed-delay retry timer. The timer re-arms
itself until a stream opens, so an endpoint that stays unreachable is
retried forever at the same pace.

Owns per connection:
- the attempt task (discovery, handshake, read loop)
- a writer task draining the outbound queue in call order
- the static snapshot task
- local bus subscriptions
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import aiohttp
from pydantic import ValidationError

from signalk_cloud._redact import redact_for_log
from signalk_cloud.bus import LocalBus, Unsubscribe
from signalk_cloud.config import EndpointConfig, RelayConfig
from signalk_cloud.discovery import DiscoveredEndpoints, resolve_endpoints
from signalk_cloud.exceptions import AuthorizationDenied, DiscoveryError, MalformedMessage, TransportError
from signalk_cloud.forwarder import RelayForwarder, parse_message
from signalk_cloud.models.access import AccessResponse
from signalk_cloud.models.position import GeoPoint
from signalk_cloud.static import build_static_delta
from signalk_cloud.status import EndpointStatus
from signalk_cloud.subscriptions import (
    build_local_subscription,
    build_remote_subscription,
    effective_static_period,
    effective_update_period,
)
from signalk_cloud.vessel import OwnVessel

_logger = logging.getLogger(__name__)


class ConnectionPhase(StrEnum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    CONNECTING = "connecting"
    SUBSCRIBING = "subscribing"
    STREAMING = "streaming"
    CLOSING = "closing"


@dataclass
class EndpointState:
    """Runtime state of one endpoint. Never shared between endpoints."""

    status: EndpointStatus
    phase: ConnectionPhase = ConnectionPhase.IDLE
    transport: aiohttp.ClientWebSocketResponse | None = None
    retry_timer: asyncio.TimerHandle | None = None
    static_task: asyncio.Task[None] | None = None
    unsubscribes: list[Unsubscribe] = field(default_factory=list)
    authorized: bool = False
    last_subscribe_position: GeoPoint | None = None
    discovered: DiscoveredEndpoints | None = None
    access_request_id: str | None = None
    access_denied: bool = False

    @property
    def had_send_error(self) -> bool:
        return self.status.had_send_error


class EndpointConnection:
    """Drives one endpoint through discovery, streaming and reconnection."""

    def __init__(
        self,
        config: EndpointConfig,
        *,
        relay_config: RelayConfig,
        http: aiohttp.ClientSession,
        bus: LocalBus,
        vessel: OwnVessel,
        on_status: Callable[[EndpointStatus], None] | None = None,
        on_credential: Callable[[EndpointConnection, str], None] | None = None,
    ) -> None:
        self.config = config
        self._relay_config = relay_config
        self._http = http
        self._bus = bus
        self._vessel = vessel
        self._on_credential = on_credential
        self.state = EndpointState(
            status=EndpointStatus(config.url, on_change=on_status),
            authorized=config.has_credential,
        )
        self._forwarder = RelayForwarder(config=config, vessel=vessel, bus=bus)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._attempt_task: asyncio.Task[None] | None = None
        self._writer_task: asyncio.Task[None] | None = None
        self._outbox: asyncio.Queue[str] | None = None
        self._stopping = False

    @property
    def url(self) -> str:
        return self.config.url

    @property
    def phase(self) -> ConnectionPhase:
        return self.state.phase

    @property
    def is_connected(self) -> bool:
        return self.state.transport is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Begin connecting. Must be called from within the event loop."""
        if not self.config.enabled:
            self.state.status.normal("disabled")
            return
        self._loop = asyncio.get_running_loop()
        self._stopping = False
        self._spawn_attempt()

    async def stop(self) -> None:
        """Tear everything down and suppress reconnection.

        Safe to call repeatedly and before :meth:`start`.
        """
        self._stopping = True
        if self.state.transport is not None:
            self.state.phase = ConnectionPhase.CLOSING
        self._clear_retry()
        self._release()
        await self._close_transport()

        task = self._attempt_task
        self._attempt_task = None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self.state.phase = ConnectionPhase.IDLE

    def _spawn_attempt(self) -> None:
        if self._attempt_task is not None and not self._attempt_task.done():
            return
        loop = self._require_loop()
        self._attempt_task = loop.create_task(self._attempt(), name=f"signalk-cloud:{self.url}")

    def _require_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    # ------------------------------------------------------------------
    # Retry timer
    # ------------------------------------------------------------------

    def _schedule_retry(self) -> None:
        if self._stopping or self.state.retry_timer is not None:
            return
        delay = self._relay_config.retry_delay
        _logger.debug("retrying %s in %.1fs", self.url, delay)
        self.state.retry_timer = self._require_loop().call_later(delay, self._on_retry_timer)

    def _on_retry_timer(self) -> None:
        self.state.retry_timer = None
        if self._stopping:
            return
        # Recurring until a stream opens; a still running attempt is left alone.
        self._schedule_retry()
        self._spawn_attempt()

    def _clear_retry(self) -> None:
        timer = self.state.retry_timer
        self.state.retry_timer = None
        if timer is not None:
            timer.cancel()

    # ------------------------------------------------------------------
    # Attempt
    # ------------------------------------------------------------------

    async def _attempt(self) -> None:
        state = self.state
        cancelled = False
        try:
            state.phase = ConnectionPhase.DISCOVERING
            discovered = await resolve_endpoints(
                self._http,
                self.url,
                update_rate=effective_update_period(self.config),
                static_update_rate=effective_static_period(self.config) * 60,
                timeout=self._relay_config.connect_timeout,
            )
            state.discovered = discovered

            state.phase = ConnectionPhase.CONNECTING
            ws = await self._open_transport(discovered.stream_url)
            await self._run_session(ws)
        except DiscoveryError as exc:
            _logger.error("discovery failed for %s: %s", self.url, exc)
            state.status.error(str(exc))
        except TransportError as exc:
            _logger.error("connection error for %s: %s", self.url, exc)
            state.status.error(str(exc))
        except asyncio.CancelledError:
            cancelled = True
            raise
        except Exception as exc:
            _logger.error("unexpected failure on %s", self.url, exc_info=True)
            state.status.error(str(exc))
        finally:
            if state.transport is not None:
                state.phase = ConnectionPhase.CLOSING
            self._release()
            await self._close_transport()
            state.phase = ConnectionPhase.IDLE
            if not cancelled:
                self._schedule_retry()

    def _handshake_headers(self) -> dict[str, str]:
        if self.config.jwt_token:
            return {"Authorization": f"JWT {self.config.jwt_token}"}
        return {}

    async def _open_transport(self, stream_url: str) -> aiohttp.ClientWebSocketResponse:
        self.state.status.normal(f"trying to connect to: {stream_url}")
        _logger.debug("connecting %s headers=%s", stream_url, redact_for_log(self._handshake_headers()))
        try:
            return await asyncio.wait_for(
                self._http.ws_connect(stream_url, headers=self._handshake_headers()),
                timeout=self._relay_config.connect_timeout,
            )
        except (aiohttp.ClientError, TimeoutError, ValueError) as exc:
            raise TransportError(f"{exc}: creating websocket for url: {stream_url}", url=stream_url) from exc

    async def _run_session(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        state = self.state
        state.transport = ws
        self._clear_retry()
        state.phase = ConnectionPhase.SUBSCRIBING
        state.status.connected()
        _logger.info("connected to %s", self.url)

        self._outbox = asyncio.Queue()
        self._writer_task = asyncio.create_task(self._writer(ws, self._outbox))

        if self.config.require_auth and not state.authorized:
            if state.access_denied:
                state.status.error(f"access request denied by {self.url}")
            else:
                self._send_access_request()

        self._vessel.refresh_from_bus(self._bus)
        self._maybe_send_remote_subscription()
        self._subscribe_local()
        state.static_task = asyncio.create_task(self._static_loop())
        state.phase = ConnectionPhase.STREAMING

        await self._read_loop(ws)

        if not self._stopping:
            _logger.info("connection to %s closed", self.url)
            state.status.error("connection closed")

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                self._on_message(msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise TransportError(f"connection error: {ws.exception()}", url=self.url)

    def _release(self) -> None:
        """Cancel subscriptions and per-connection tasks. Idempotent."""
        state = self.state
        unsubscribes = list(state.unsubscribes)
        state.unsubscribes.clear()
        for unsubscribe in unsubscribes:
            try:
                unsubscribe()
            except Exception:
                _logger.debug("unsubscribe failed for %s", self.url, exc_info=True)

        static_task = state.static_task
        state.static_task = None
        if static_task is not None:
            static_task.cancel()

        writer_task = self._writer_task
        self._writer_task = None
        if writer_task is not None:
            writer_task.cancel()
        self._outbox = None
        state.last_subscribe_position = None

    async def _close_transport(self) -> None:
        ws = self.state.transport
        self.state.transport = None
        if ws is None or ws.closed:
            return
        try:
            await ws.close()
        except (aiohttp.ClientError, ConnectionError):
            _logger.debug("closing %s failed", self.url, exc_info=True)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def _writer(self, ws: aiohttp.ClientWebSocketResponse, outbox: asyncio.Queue[str]) -> None:
        while True:
            text = await outbox.get()
            try:
                await ws.send_str(text)
            except (aiohttp.ClientError, ConnectionError, RuntimeError) as exc:
                self.state.status.send_failed(TransportError(str(exc), url=self.url))
            else:
                self.state.status.send_succeeded()

    def _enqueue(self, payload: dict[str, Any]) -> bool:
        outbox = self._outbox
        if outbox is None:
            return False
        outbox.put_nowait(json.dumps(payload))
        return True

    def _subscribe_local(self) -> None:
        subscription = build_local_subscription(self.config, effective_update_period(self.config))
        _logger.debug("local subscription for %s: %s", self.url, subscription)
        self._bus.subscribe(
            subscription,
            self.state.unsubscribes,
            self._on_subscription_error,
            self._on_local_delta,
        )

    def _on_subscription_error(self, error: Any) -> None:
        _logger.error("local subscription error for %s: %s", self.url, error)

    def _on_local_delta(self, raw: dict[str, Any]) -> None:
        if self.state.transport is None:
            return
        delta = self._forwarder.prepare_outbound(raw, authorized=self.state.authorized)
        self._maybe_send_remote_subscription()
        if delta is not None:
            self._enqueue(delta.to_wire())

    def _maybe_send_remote_subscription(self) -> None:
        """Ask the server for nearby vessels once per connection.

        With ``resubscribe_distance`` configured the subscription is sent
        again after the vessel has moved that far.
        """
        if not self.config.fetch_other_vessels or self.state.transport is None:
            return
        position = self._vessel.position
        if position is None:
            return
        last = self.state.last_subscribe_position
        if last is not None:
            threshold = self.config.resubscribe_distance
            if threshold is None or last.distance_to(position) < threshold:
                return

        subscription = build_remote_subscription(self.config, position)
        _logger.debug("remote subscription for %s: %s", self.url, subscription)
        if self._enqueue(subscription):
            self.state.last_subscribe_position = position

    async def _static_loop(self) -> None:
        interval = effective_static_period(self.config) * 60
        while True:
            try:
                self.send_static()
            except Exception:
                _logger.error("collecting static data for %s failed", self.url, exc_info=True)
            await asyncio.sleep(interval)

    def send_static(self) -> bool:
        """Queue the static snapshot. Returns ``False`` when it was not sent."""
        if self.config.require_auth and not self.state.authorized:
            _logger.debug("not authorized on %s, static data not sent", self.url)
            return False
        delta = build_static_delta(self._bus, self._vessel.context, self._relay_config.server_version)
        payload = delta.to_wire()
        _logger.debug("sending static data to %s: %s", self.url, payload)
        return self._enqueue(payload)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _on_message(self, data: str | bytes) -> None:
        try:
            message = parse_message(data)
            if "accessRequest" in message:
                self._handle_access_response(message)
                return
            self._forwarder.handle_inbound(message)
        except MalformedMessage as exc:
            _logger.debug("dropping message from %s: %s", self.url, exc)
        except AuthorizationDenied as exc:
            _logger.error("%s", exc)
            self.state.status.error(str(exc))

    def _send_access_request(self) -> None:
        request_id = str(uuid.uuid4())
        self.state.access_request_id = request_id
        self._enqueue(
            {
                "requestId": request_id,
                "accessRequest": {
                    "clientId": self._relay_config.client_id,
                    "description": self._relay_config.description,
                    "permissions": "readwrite",
                },
            }
        )
        self.state.status.normal("access request sent, waiting for approval")

    def _handle_access_response(self, message: dict[str, Any]) -> None:
        try:
            response = AccessResponse.model_validate(message)
        except ValidationError as exc:
            raise MalformedMessage(f"invalid access response: {exc}") from exc
        _logger.debug("access response from %s: %s", self.url, redact_for_log(message))
        expected = self.state.access_request_id
        if response.request_id is not None and response.request_id != expected:
            _logger.debug("ignoring access response %s from %s, waiting for %s", response.request_id, self.url, expected)
            return

        if response.denied:
            self.state.authorized = False
            self.state.access_denied = True
            self.state.access_request_id = None
            raise AuthorizationDenied(f"access request denied by {self.url}", url=self.url)

        token = response.token
        if token is None:
            return
        self.config.jwt_token = token
        self.state.authorized = True
        _logger.info("received credential from %s", self.url)
        self.state.status.connected()
        if self._on_credential is not None:
            self._on_credential(self, token)
        self.send_static()
