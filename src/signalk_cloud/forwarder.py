"""Per-message relay path in both directions."""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from signalk_cloud._constants import PLUGIN_ID, SELF_SHORTHAND
from signalk_cloud._redact import redact_for_log
from signalk_cloud.bus import LocalBus
from signalk_cloud.config import EndpointConfig
from signalk_cloud.exceptions import MalformedMessage
from signalk_cloud.models.delta import Delta
from signalk_cloud.provenance import is_cloud_origin, strip_outbound, tag_inbound
from signalk_cloud.subscriptions import extract_position
from signalk_cloud.vessel import POSITION_PATH, OwnVessel

_logger = logging.getLogger(__name__)


def parse_message(text: str | bytes) -> dict[str, Any]:
    """Decode one stream message into a JSON object."""
    try:
        message = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedMessage(f"invalid JSON: {exc}") from exc
    if not isinstance(message, dict):
        raise MalformedMessage("message is not a JSON object")
    return message


class RelayForwarder:
    """Applies context rewriting and loop prevention to each delta.

    The forwarder never touches a transport: outbound deltas are returned to
    the caller for queueing, inbound deltas are handed to the local bus.
    """

    def __init__(self, *, config: EndpointConfig, vessel: OwnVessel, bus: LocalBus) -> None:
        self._config = config
        self._vessel = vessel
        self._bus = bus

    def prepare_outbound(self, raw: dict[str, Any], *, authorized: bool) -> Delta | None:
        """Turn a local bus delta into what is sent to the cloud.

        Returns ``None`` when nothing must be sent: the delta echoes cloud
        data, carries no updates, or the endpoint is not yet authorized.
        """
        try:
            delta = Delta.model_validate(raw)
        except ValidationError:
            _logger.debug("dropping unparseable local delta %s", redact_for_log(raw), exc_info=True)
            return None
        if not delta.updates:
            return None
        if is_cloud_origin(delta):
            return None

        if delta.context in (None, SELF_SHORTHAND):
            delta = delta.model_copy(update={"context": self._vessel.context})
        if delta.context == self._vessel.context:
            self._observe_position(delta)

        if self._config.require_auth and not authorized:
            return None
        return strip_outbound(delta)

    def _observe_position(self, delta: Delta) -> None:
        for update in delta.updates or ():
            entry = update.find_value(POSITION_PATH)
            if entry is None:
                continue
            position = extract_position(entry.value)
            if position is not None:
                self._vessel.observe_position(position)

    def handle_inbound(self, message: dict[str, Any]) -> Delta | None:
        """Apply a cloud delta locally unless it is our own data coming back.

        Raises
        ------
        MalformedMessage
            When ``updates`` is present but not a valid update list.
        """
        if "updates" not in message:
            return None
        context = message.get("context")
        # A missing context means the own vessel on the local server.
        if context in (None, self._vessel.context, SELF_SHORTHAND):
            return None

        try:
            delta = Delta.model_validate(message)
        except ValidationError as exc:
            raise MalformedMessage(f"invalid delta: {exc}") from exc
        if not delta.updates:
            return None

        tagged = tag_inbound(delta)
        self._bus.handle_message(PLUGIN_ID, tagged.to_wire())
        return tagged
