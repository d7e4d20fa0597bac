"""Per-endpoint status line.

Only the latest status is kept. Send failures flip an error flag; the first
successful send afterwards restores the connected status once, instead of
reporting every message.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import StrEnum

_logger = logging.getLogger(__name__)


class StatusKind(StrEnum):
    NORMAL = "normal"
    ERROR = "error"


class EndpointStatus:
    def __init__(self, url: str, *, on_change: Callable[[EndpointStatus], None] | None = None) -> None:
        self.url = url
        self.message: str | None = None
        self.kind: StatusKind = StatusKind.NORMAL
        self.had_send_error = False
        self._on_change = on_change

    def __str__(self) -> str:
        if self.message is None:
            return ""
        return f"{self.kind}: {self.message}"

    def _set(self, message: str, kind: StatusKind) -> None:
        self.message = message
        self.kind = kind
        if self._on_change is not None:
            self._on_change(self)

    def normal(self, message: str) -> None:
        self._set(message, StatusKind.NORMAL)

    def error(self, message: str) -> None:
        self._set(message, StatusKind.ERROR)

    def connected(self) -> None:
        self.normal(f"Connected to {self.url}")

    def send_failed(self, exc: BaseException) -> None:
        _logger.error("error sending to server %s: %s", self.url, exc)
        self.had_send_error = True
        self.error(f"sending: {exc}")

    def send_succeeded(self) -> None:
        if self.had_send_error:
            self.had_send_error = False
            self.connected()
