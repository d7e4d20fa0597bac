"""Static vessel data snapshot.

Name, MMSI, design dimensions and the like rarely change and are not
covered by the periodic local subscription, so they are collected and sent
as one delta on connect and then on a coarse interval.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from signalk_cloud._constants import SERVER_NAME, STATIC_KEYS
from signalk_cloud.bus import LocalBus
from signalk_cloud.models.delta import Delta


def _unwrap(value: Any) -> Any:
    if isinstance(value, Mapping) and "value" in value:
        return value["value"]
    return value


def collect_static_values(bus: LocalBus, keys: tuple[str, ...] = STATIC_KEYS) -> list[dict[str, Any]]:
    """Read each static key from the bus as ``{path, value}`` entries.

    Absent keys are skipped. Top-level keys are sent as an object on the
    root path (``{"path": "", "value": {"name": ...}}``), matching how the
    server represents vessel root properties.
    """
    values: list[dict[str, Any]] = []
    for path in keys:
        raw = bus.get_self_path(path)
        if raw is None:
            continue
        value = _unwrap(raw)
        if value is None:
            continue
        if "." not in path:
            values.append({"path": "", "value": {path: value}})
        else:
            values.append({"path": path, "value": value})
    return values


def build_static_delta(bus: LocalBus, self_context: str, server_version: str) -> Delta:
    """Build the static snapshot. Always a single update record."""
    values: list[dict[str, Any]] = [
        {
            "path": "",
            "value": {"serverName": SERVER_NAME, "serverVersion": server_version},
        }
    ]
    values.extend(collect_static_values(bus))
    return Delta.model_validate({"context": self_context, "updates": [{"values": values}]})
