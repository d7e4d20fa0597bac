"""Delta wire models.

A delta is the unit exchanged in both directions::

    {"context": "vessels.urn:mrn:...",
     "updates": [{"source": {"label": "n2k"}, "$source": "n2k.115",
                  "values": [{"path": "navigation.speedOverGround", "value": 3.2}]}]}

Only the envelope is modeled. Unknown keys (``timestamp``, ``meta``, ...)
are preserved verbatim so the relay never has to understand a path.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from signalk_cloud._constants import CLOUD_MARKER


class Provenance(StrEnum):
    """Where an update record came from, as far as the relay can tell."""

    LOCAL = "local"
    CLOUD = "cloud"


def _has_marker(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(CLOUD_MARKER)


class PathValue(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    path: str
    value: Any = None


class Update(BaseModel):
    """One update record of a delta."""

    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    source: dict[str, Any] | None = None
    source_ref: str | None = Field(default=None, alias="$source")
    values: list[PathValue] | None = None

    @property
    def source_label(self) -> str | None:
        if self.source is None:
            return None
        label = self.source.get("label")
        return label if isinstance(label, str) else None

    @property
    def provenance(self) -> Provenance:
        if _has_marker(self.source_label) or _has_marker(self.source_ref):
            return Provenance.CLOUD
        return Provenance.LOCAL

    def find_value(self, path: str) -> PathValue | None:
        for entry in self.values or ():
            if entry.path == path:
                return entry
        return None


class Delta(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    context: str | None = None
    updates: list[Update] | None = None

    def to_wire(self) -> dict[str, Any]:
        """Serialize using wire key names, emitting only keys that were set."""
        return self.model_dump(by_alias=True, exclude_unset=True)
