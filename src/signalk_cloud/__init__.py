"""signalk_cloud - Relay Signal K deltas between a local server and cloud endpoints."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("signalk-cloud")
except PackageNotFoundError:
    __version__ = "0+local"
from signalk_cloud.bus import LocalBus, StatusSink
from signalk_cloud.config import DataPolicy, EndpointConfig, RelayConfig
from signalk_cloud.connection import ConnectionPhase, EndpointConnection, EndpointState
from signalk_cloud.exceptions import (
    AuthorizationDenied,
    CloudRelayError,
    DiscoveryError,
    MalformedMessage,
    RelayConfigError,
    TransportError,
)
from signalk_cloud.models import Delta, GeoPoint, PathValue, Provenance, Update
from signalk_cloud.registry import EndpointRegistry
from signalk_cloud.relay import CloudRelay
from signalk_cloud.store import ConfigStore, JsonFileConfigStore, MemoryConfigStore

__all__ = [
    "__version__",
    "AuthorizationDenied",
    "CloudRelay",
    "CloudRelayError",
    "ConfigStore",
    "ConnectionPhase",
    "DataPolicy",
    "Delta",
    "DiscoveryError",
    "EndpointConfig",
    "EndpointConnection",
    "EndpointRegistry",
    "EndpointState",
    "GeoPoint",
    "JsonFileConfigStore",
    "LocalBus",
    "MalformedMessage",
    "MemoryConfigStore",
    "PathValue",
    "Provenance",
    "RelayConfig",
    "RelayConfigError",
    "StatusSink",
    "TransportError",
    "Update",
]
