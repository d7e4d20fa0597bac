from __future__ import annotations

import pytest

from signalk_cloud.config import EndpointConfig
from signalk_cloud.exceptions import MalformedMessage
from signalk_cloud.forwarder import RelayForwarder, parse_message
from signalk_cloud.models.position import GeoPoint
from signalk_cloud.vessel import OwnVessel

SELF_ID = "urn:mrn:imo:mmsi:230123456"


class _Bus:
    def __init__(self) -> None:
        self.handled: list[tuple[str, dict]] = []

    def get_self_path(self, _path: str):
        return None

    def subscribe(self, *_args) -> None:
        raise AssertionError("forwarder never subscribes")

    def handle_message(self, provider_id: str, delta: dict) -> None:
        self.handled.append((provider_id, delta))


def _forwarder(**endpoint) -> tuple[RelayForwarder, OwnVessel, _Bus]:
    vessel = OwnVessel(SELF_ID)
    bus = _Bus()
    forwarder = RelayForwarder(config=EndpointConfig(url="http://cloud.test", **endpoint), vessel=vessel, bus=bus)
    return forwarder, vessel, bus


def test_parse_message_rejects_non_objects() -> None:
    assert parse_message('{"a": 1}') == {"a": 1}
    with pytest.raises(MalformedMessage):
        parse_message("{")
    with pytest.raises(MalformedMessage):
        parse_message("[1]")
    with pytest.raises(MalformedMessage):
        parse_message(b"\xff\xfe\x00")


def test_outbound_without_context_gets_own_context() -> None:
    forwarder, vessel, _bus = _forwarder()

    delta = forwarder.prepare_outbound({"updates": [{"values": [{"path": "a", "value": 1}]}]}, authorized=True)

    assert delta is not None
    assert delta.context == vessel.context


def test_outbound_other_context_is_kept() -> None:
    forwarder, _vessel, _bus = _forwarder()

    delta = forwarder.prepare_outbound(
        {"context": "vessels.urn:mrn:imo:mmsi:999", "updates": [{"values": [{"path": "a", "value": 1}]}]},
        authorized=True,
    )

    assert delta is not None
    assert delta.context == "vessels.urn:mrn:imo:mmsi:999"


@pytest.mark.parametrize(
    "raw",
    [
        {"context": "vessels.self"},
        {"context": "vessels.self", "updates": []},
        {"context": "vessels.self", "updates": "garbage"},
        {"context": "vessels.self", "updates": [{"source": {"label": "cloud:x"}, "values": []}]},
    ],
)
def test_outbound_dropped(raw: dict) -> None:
    forwarder, _vessel, _bus = _forwarder()
    assert forwarder.prepare_outbound(raw, authorized=True) is None


def test_outbound_gated_on_authorization_but_position_still_tracked() -> None:
    forwarder, vessel, _bus = _forwarder(require_auth=True)
    raw = {
        "context": "vessels.self",
        "updates": [{"values": [{"path": "navigation.position", "value": {"latitude": 1.0, "longitude": 2.0}}]}],
    }

    assert forwarder.prepare_outbound(raw, authorized=False) is None
    assert vessel.position == GeoPoint(latitude=1.0, longitude=2.0)


def test_outbound_without_auth_requirement_is_sent() -> None:
    forwarder, _vessel, _bus = _forwarder(require_auth=False)
    raw = {"context": "vessels.self", "updates": [{"values": [{"path": "a", "value": 1}]}]}
    assert forwarder.prepare_outbound(raw, authorized=False) is not None


def test_inbound_tagged_before_bus() -> None:
    forwarder, _vessel, bus = _forwarder()

    tagged = forwarder.handle_inbound(
        {"context": "vessels.urn:mrn:imo:mmsi:1", "updates": [{"values": [{"path": "a", "value": 1}]}]}
    )

    assert tagged is not None
    assert bus.handled == [
        (
            "signalk-cloud",
            {
                "context": "vessels.urn:mrn:imo:mmsi:1",
                "updates": [{"$source": "cloud:remote", "values": [{"path": "a", "value": 1}]}],
            },
        )
    ]


@pytest.mark.parametrize(
    "message",
    [
        {"name": "cloud", "version": "1.0.0"},
        {"updates": [{"values": [{"path": "navigation.speedOverGround", "value": 1}]}]},
        {"context": f"vessels.{SELF_ID}", "updates": [{"values": []}]},
        {"context": "vessels.self", "updates": [{"values": []}]},
        {"context": "vessels.urn:mrn:imo:mmsi:1", "updates": []},
    ],
)
def test_inbound_ignored(message: dict) -> None:
    forwarder, _vessel, bus = _forwarder()
    assert forwarder.handle_inbound(message) is None
    assert bus.handled == []


def test_inbound_invalid_updates_raise() -> None:
    forwarder, _vessel, bus = _forwarder()
    with pytest.raises(MalformedMessage):
        forwarder.handle_inbound({"context": "vessels.x", "updates": [{"values": "nope"}]})
    assert bus.handled == []
