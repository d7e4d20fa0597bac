from __future__ import annotations

import pytest

from signalk_cloud.config import DataPolicy, EndpointConfig, RelayConfig
from signalk_cloud.exceptions import RelayConfigError

SELF_ID = "urn:mrn:imo:mmsi:230123456"


def test_endpoint_defaults() -> None:
    endpoint = EndpointConfig(url="https://cloud.signalk.org")

    assert endpoint.enabled
    assert endpoint.data_to_send is DataPolicy.NAV_ENVIRONMENT
    assert endpoint.server_update_period == 30
    assert endpoint.static_update_period == 5
    assert endpoint.require_auth
    assert endpoint.fetch_other_vessels
    assert not endpoint.has_credential


def test_endpoint_blank_token_is_no_credential() -> None:
    assert EndpointConfig(url="http://x", jwt_token="   ").jwt_token is None


def test_endpoint_legacy_policy_name() -> None:
    assert EndpointConfig.model_validate({"url": "http://x", "dataToSend": "navigation"}).data_to_send is DataPolicy.NAV


@pytest.mark.parametrize("bad", [{"url": ""}, {"url": "http://x", "serverUpdatePeriod": 0}, {"url": "http://x", "dataToSend": "everything"}])
def test_invalid_endpoint_options(bad: dict) -> None:
    with pytest.raises(RelayConfigError):
        RelayConfig.from_options({"selfId": SELF_ID, "endpoints": [bad]})


def test_from_options_list_shape() -> None:
    config = RelayConfig.from_options(
        {
            "selfId": SELF_ID,
            "serverVersion": "2.13.0",
            "retryDelay": 5,
            "endpoints": [
                {"url": "http://a.test", "jwtToken": "t", "dataToSend": "all"},
                {"url": "http://b.test", "enabled": False},
            ],
        }
    )

    assert config.self_context == f"vessels.{SELF_ID}"
    assert config.retry_delay == 5
    assert [e.url for e in config.endpoints] == ["http://a.test", "http://b.test"]
    assert config.endpoint("http://a.test").data_to_send is DataPolicy.ALL
    assert config.endpoint("http://missing.test") is None


def test_from_options_legacy_flat_shape() -> None:
    config = RelayConfig.from_options({"selfId": SELF_ID, "url": "ws://cloud.test", "jwtToken": "tok"})

    (endpoint,) = config.endpoints
    assert endpoint.url == "ws://cloud.test"
    assert endpoint.jwt_token == "tok"


def test_from_options_requires_self_id() -> None:
    with pytest.raises(RelayConfigError):
        RelayConfig.from_options({"endpoints": []})


@pytest.mark.parametrize(
    "second",
    ["http://a.test", "http://a.test/", "ws://a.test", " http://a.test"],
)
def test_duplicate_urls_rejected(second: str) -> None:
    with pytest.raises(RelayConfigError):
        RelayConfig.from_options({"selfId": SELF_ID, "endpoints": [{"url": "http://a.test"}, {"url": second}]})


def test_distinct_urls_accepted() -> None:
    config = RelayConfig.from_options(
        {"selfId": SELF_ID, "endpoints": [{"url": "http://a.test"}, {"url": "https://a.test"}]}
    )
    assert len(config.endpoints) == 2


def test_options_round_trip_keeps_client_id() -> None:
    config = RelayConfig.from_options({"selfId": SELF_ID, "endpoints": [{"url": "http://a", "jwtToken": "t"}]})

    again = RelayConfig.from_options(config.to_options())

    assert again.client_id == config.client_id
    assert again.endpoints == config.endpoints


def test_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SIGNALK_SELF_ID", SELF_ID)
    monkeypatch.setenv("SIGNALK_CLOUD_URL", "https://cloud.test")
    monkeypatch.setenv("SIGNALK_CLOUD_TOKEN", "tok")
    monkeypatch.setenv("SIGNALK_CLOUD_DATA_TO_SEND", "nav")
    monkeypatch.setenv("SIGNALK_CLOUD_RETRY_DELAY", "2.5")

    config = RelayConfig.from_env()

    assert config.retry_delay == 2.5
    (endpoint,) = config.endpoints
    assert endpoint.jwt_token == "tok"
    assert endpoint.data_to_send is DataPolicy.NAV


def test_from_env_bad_retry_delay(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SIGNALK_SELF_ID", SELF_ID)
    monkeypatch.setenv("SIGNALK_CLOUD_RETRY_DELAY", "soon")

    with pytest.raises(RelayConfigError):
        RelayConfig.from_env()
