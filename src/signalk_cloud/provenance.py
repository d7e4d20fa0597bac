"""Loop prevention.

Everything received from a cloud server is stamped with the ``cloud:``
marker before it reaches the local bus. The local bus may hand those
updates straight back to the relay's own subscription; any delta carrying
the marker is therefore never forwarded outward again.
"""

from __future__ import annotations

from signalk_cloud._constants import CLOUD_MARKER
from signalk_cloud.models.delta import Delta, Provenance, Update

_SOURCE_KEYS = ("source", "$source")


def _prefixed(value: str) -> str:
    return value if value.startswith(CLOUD_MARKER) else f"{CLOUD_MARKER}{value}"


def is_cloud_origin(delta: Delta) -> bool:
    """True when any update of *delta* already carries the cloud marker."""
    return any(update.provenance is Provenance.CLOUD for update in delta.updates or ())


def strip_update(update: Update) -> Update:
    """Drop local source annotations from an update record."""
    if update.source is None and update.source_ref is None:
        return update
    data = update.model_dump(by_alias=True, exclude_unset=True)
    for key in _SOURCE_KEYS:
        data.pop(key, None)
    return Update.model_validate(data)


def strip_outbound(delta: Delta) -> Delta:
    if not delta.updates:
        return delta
    return delta.model_copy(update={"updates": [strip_update(u) for u in delta.updates]})


def tag_update(update: Update, *, fallback: str = "remote") -> Update:
    """Stamp the cloud marker onto an update record exactly once."""
    changes: dict[str, object] = {}
    if update.source is not None:
        changes["source"] = {**update.source, "label": _prefixed(update.source_label or fallback)}
    if update.source_ref is not None:
        changes["source_ref"] = _prefixed(update.source_ref)
    if not changes:
        changes["source_ref"] = _prefixed(fallback)
    return update.model_copy(update=changes)


def tag_inbound(delta: Delta, *, fallback: str = "remote") -> Delta:
    if not delta.updates:
        return delta
    return delta.model_copy(update={"updates": [tag_update(u, fallback=fallback) for u in delta.updates]})
