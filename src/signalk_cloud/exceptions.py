"""Custom exception hierarchy for signalk-cloud."""

from __future__ import annotations


class CloudRelayError(Exception):
    """Base exception for all signalk-cloud errors."""


class RelayConfigError(CloudRelayError):
    """Invalid or missing configuration."""


class DiscoveryError(CloudRelayError):
    """Resolving a cloud endpoint failed (network, non-200, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        url: str = "",
    ) -> None:
        self.status_code = status_code
        self.url = url
        super().__init__(message)


class TransportError(CloudRelayError):
    """Websocket open, send or runtime failure."""

    def __init__(self, message: str, *, url: str = "") -> None:
        self.url = url
        super().__init__(message)


class AuthorizationDenied(CloudRelayError):
    """The cloud server explicitly denied an access request.

    The endpoint stays unauthenticated until a credential is configured
    again; no retry is attempted for the denial itself.
    """

    def __init__(self, message: str, *, url: str = "") -> None:
        self.url = url
        super().__init__(message)


class MalformedMessage(CloudRelayError):
    """Inbound stream payload could not be parsed as a delta."""
