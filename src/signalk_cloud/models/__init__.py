"""Wire and domain models."""

from signalk_cloud.models.access import AccessRequestResult, AccessResponse
from signalk_cloud.models.delta import Delta, PathValue, Provenance, Update
from signalk_cloud.models.position import GeoPoint

__all__ = [
    "AccessRequestResult",
    "AccessResponse",
    "Delta",
    "GeoPoint",
    "PathValue",
    "Provenance",
    "Update",
]
