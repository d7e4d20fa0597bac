"""Geographic point model."""

from __future__ import annotations

import math

from pydantic import BaseModel, ConfigDict

_EARTH_RADIUS_M = 6_371_000.0


class GeoPoint(BaseModel):
    """Latitude/longitude pair in decimal degrees."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    latitude: float
    longitude: float

    def distance_to(self, other: GeoPoint) -> float:
        """Great-circle distance to *other* in meters (haversine)."""
        lat1 = math.radians(self.latitude)
        lat2 = math.radians(other.latitude)
        dlat = lat2 - lat1
        dlon = math.radians(other.longitude - self.longitude)
        a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
        return 2 * _EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))

    def to_wire(self) -> dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}
