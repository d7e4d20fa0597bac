"""Interfaces of the local Signal K server the relay plugs into.

Having protocols here makes it easy to pass test doubles while keeping the
relay independent of any concrete server implementation.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

Unsubscribe = Callable[[], None]
DeltaCallback = Callable[[dict[str, Any]], None]
ErrorCallback = Callable[[Any], None]


class LocalBus(Protocol):
    """Publish/subscribe facade of the local server."""

    def get_self_path(self, path: str) -> Any:
        """Current value at *path* on the own vessel, or ``None`` when absent.

        The value may be wrapped in a ``{"value": ..., "timestamp": ...}``
        envelope.
        """
        ...

    def subscribe(
        self,
        subscription: dict[str, Any],
        unsubscribes: list[Unsubscribe],
        on_error: ErrorCallback,
        on_delta: DeltaCallback,
    ) -> None:
        """Subscribe to ``{context, subscribe: [{path, period}]}``.

        Cancellation callbacks are appended to *unsubscribes*; *on_delta*
        is called with every matching delta until they are invoked.
        """
        ...

    def handle_message(self, provider_id: str, delta: dict[str, Any]) -> None:
        """Inject an externally originated delta into the local server."""
        ...


@runtime_checkable
class StatusSink(Protocol):
    """Optional capability of a bus: show a provider status line."""

    def set_provider_status(self, message: str, kind: str) -> None: ...
