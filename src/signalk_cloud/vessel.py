"""Own-vessel state shared by all endpoints."""

from __future__ import annotations

import logging

from signalk_cloud.bus import LocalBus
from signalk_cloud.models.position import GeoPoint
from signalk_cloud.subscriptions import extract_position

_logger = logging.getLogger(__name__)

POSITION_PATH = "navigation.position"


class OwnVessel:
    """Identity and last known position of the local vessel.

    Any endpoint may record a newer position; all of them read the same
    source, so the last writer simply wins.
    """

    def __init__(self, self_id: str, position: GeoPoint | None = None) -> None:
        self.self_id = self_id
        self.position = position

    @property
    def context(self) -> str:
        return f"vessels.{self.self_id}"

    def observe_position(self, position: GeoPoint) -> None:
        if self.position is None:
            _logger.debug("own position known: %s", position)
        self.position = position

    def refresh_from_bus(self, bus: LocalBus) -> GeoPoint | None:
        """Pick up the current position from the bus, keeping the old one if absent."""
        position = extract_position(bus.get_self_path(POSITION_PATH))
        if position is not None:
            self.observe_position(position)
        return self.position
