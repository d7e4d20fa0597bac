"""Local and remote subscription documents.

The local subscription decides what leaves the boat; the remote one asks the
cloud server for everything within a radius of the vessel's position.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from signalk_cloud._constants import MIN_STATIC_PERIOD_MINUTES, MIN_UPDATE_PERIOD_SECONDS, SELF_SHORTHAND
from signalk_cloud.config import DataPolicy, EndpointConfig
from signalk_cloud.models.position import GeoPoint

_POLICY_PATHS: dict[DataPolicy, tuple[str, ...]] = {
    DataPolicy.NAV: ("navigation.*",),
    DataPolicy.NAV_ENVIRONMENT: ("navigation.*", "environment.*"),
    DataPolicy.ALL: ("*",),
}


def effective_update_period(config: EndpointConfig) -> float:
    """Outward update period in seconds, floored to what servers accept."""
    return max(float(config.server_update_period), float(MIN_UPDATE_PERIOD_SECONDS))


def effective_static_period(config: EndpointConfig) -> float:
    """Static snapshot period in minutes, floored."""
    return max(float(config.static_update_period), float(MIN_STATIC_PERIOD_MINUTES))


def local_paths(policy: DataPolicy) -> tuple[str, ...]:
    return _POLICY_PATHS[policy]


def build_local_subscription(config: EndpointConfig, period_seconds: float | None = None) -> dict[str, Any]:
    """Subscription on the local bus for data to forward outward.

    *period_seconds* defaults to the configured period unclamped; the
    connection passes :func:`effective_update_period`.
    """
    if period_seconds is None:
        period_seconds = float(config.server_update_period)
    period_ms = int(period_seconds * 1000)
    return {
        "context": SELF_SHORTHAND,
        "subscribe": [{"path": path, "period": period_ms} for path in local_paths(config.data_to_send)],
    }


def build_remote_subscription(config: EndpointConfig, position: GeoPoint) -> dict[str, Any]:
    """Subscription sent to the cloud server for vessels around *position*."""
    return {
        "context": {
            "radius": config.other_vessels_radius,
            "position": position.to_wire(),
        },
        "subscribe": [
            {
                "path": "*",
                "period": int(config.client_update_period * 1000),
            }
        ],
    }


def extract_position(value: Any) -> GeoPoint | None:
    """Turn a bus value for ``navigation.position`` into a point.

    Accepts the bare ``{latitude, longitude}`` object or one wrapped in a
    ``{"value": ...}`` envelope. Returns ``None`` when either coordinate is
    missing.
    """
    if isinstance(value, Mapping) and "value" in value and isinstance(value.get("value"), Mapping):
        value = value["value"]
    if not isinstance(value, Mapping):
        return None
    if value.get("latitude") is None or value.get("longitude") is None:
        return None
    try:
        return GeoPoint.model_validate(value)
    except ValidationError:
        return None
