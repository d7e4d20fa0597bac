"""Relay configuration for signalk-cloud."""

from __future__ import annotations

import dataclasses
import os
import uuid
from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from signalk_cloud._constants import RETRY_DELAY_SECONDS
from signalk_cloud.discovery import normalize_base_url
from signalk_cloud.exceptions import RelayConfigError

# Keys of the legacy flat single-endpoint options shape.
_LEGACY_ENDPOINT_KEYS = frozenset(
    {
        "url",
        "jwtToken",
        "serverUpdatePeriod",
        "staticUpdatePeriod",
        "dataToSend",
        "clientUpdatePeriod",
        "otherVesselsRadius",
        "fetchOtherVessels",
        "requireAuth",
        "resubscribeDistance",
        "enabled",
    }
)


class DataPolicy(StrEnum):
    """Which local data is forwarded to the cloud."""

    NAV = "nav"
    NAV_ENVIRONMENT = "nav+environment"
    ALL = "all"


class EndpointConfig(BaseModel):
    """Settings for one cloud endpoint, keyed by ``url``.

    The model is mutable: ``jwt_token`` is replaced in place
    when the server issues a credential over the stream.

    Parameters
    ----------
    url : str
        Base URL of the cloud server. Legacy ``ws://``/``wss://`` values
        are accepted and normalized at discovery time.
    enabled : bool
        Disabled endpoints are kept in the registry but never connected.
    jwt_token : str or None
        Credential sent on the websocket handshake.
    data_to_send : DataPolicy
        Which local paths are forwarded.
    server_update_period : float
        Outward update period in seconds (floored to 10 s before use).
    static_update_period : float
        Static snapshot period in minutes (floored to 5 min before use).
    client_update_period : float
        Period in seconds requested for data coming from the server.
    other_vessels_radius : float
        Radius in meters of the geographic remote subscription.
    fetch_other_vessels : bool
        Request nearby vessels from the server.
    require_auth : bool
        Nothing is forwarded outward until a credential is known.
    resubscribe_distance : float or None
        When set, re-send the remote subscription once the vessel has moved
        this many meters from where it last subscribed.
    """

    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
        validate_assignment=True,
        str_strip_whitespace=True,
    )

    url: str
    enabled: bool = True
    jwt_token: str | None = None
    data_to_send: DataPolicy = DataPolicy.NAV_ENVIRONMENT
    server_update_period: float = Field(default=30, gt=0)
    static_update_period: float = Field(default=5, gt=0)
    client_update_period: float = Field(default=30, gt=0)
    other_vessels_radius: float = Field(default=5000, gt=0)
    fetch_other_vessels: bool = True
    require_auth: bool = True
    resubscribe_distance: float | None = Field(default=None, gt=0)

    @field_validator("url")
    @classmethod
    def _require_url(cls, value: str) -> str:
        if not value:
            raise ValueError("url must be non-empty")
        return value

    @field_validator("jwt_token")
    @classmethod
    def _empty_token_is_none(cls, value: str | None) -> str | None:
        return value or None

    @field_validator("data_to_send", mode="before")
    @classmethod
    def _legacy_policy_names(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().lower() == "navigation":
            return DataPolicy.NAV
        return value

    @property
    def has_credential(self) -> bool:
        return self.jwt_token is not None

    def to_options(self) -> dict[str, Any]:
        """Dump to the persisted camelCase options shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _endpoints_from_options(options: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    raw = options.get("endpoints")
    if raw is None:
        if "url" in options:
            return [{k: v for k, v in options.items() if k in _LEGACY_ENDPOINT_KEYS}]
        return []
    if not isinstance(raw, list) or not all(isinstance(item, Mapping) for item in raw):
        raise RelayConfigError("'endpoints' must be a list of objects")
    return raw


@dataclasses.dataclass(frozen=True)
class RelayConfig:
    """Relay configuration.

    Parameters
    ----------
    self_id : str
        Identifier of the local vessel (``urn:mrn:...``). The vessel's own
        context is ``vessels.<self_id>``.
    server_version : str
        Version string published with the static snapshot.
    endpoints : tuple of EndpointConfig
        Configured cloud endpoints; URLs are unique.
    retry_delay : float
        Seconds between reconnection attempts. Fixed, never backed off.
    connect_timeout : float
        Timeout for discovery and websocket handshake.
    client_id : str
        Stable id sent with access requests.
    description : str
        Human readable description sent with access requests.
    """

    self_id: str
    server_version: str = "0.0.0"
    endpoints: tuple[EndpointConfig, ...] = ()
    retry_delay: float = RETRY_DELAY_SECONDS
    connect_timeout: float = 30.0
    client_id: str = dataclasses.field(default_factory=lambda: str(uuid.uuid4()))
    description: str = "Signal K cloud relay"

    def __post_init__(self) -> None:
        if not self.self_id or not self.self_id.strip():
            raise RelayConfigError("self_id must be non-empty")
        seen: set[str] = set()
        for endpoint in self.endpoints:
            key = normalize_base_url(endpoint.url)
            if key in seen:
                raise RelayConfigError(f"duplicate endpoint url: {endpoint.url}")
            seen.add(key)
        if self.retry_delay <= 0:
            raise RelayConfigError("retry_delay must be positive")

    @property
    def self_context(self) -> str:
        return f"vessels.{self.self_id}"

    def endpoint(self, url: str) -> EndpointConfig | None:
        for endpoint in self.endpoints:
            if endpoint.url == url:
                return endpoint
        return None

    @classmethod
    def from_options(cls, options: Mapping[str, Any], **overrides: Any) -> RelayConfig:
        """Create configuration from persisted plugin options.

        Accepts either ``{"endpoints": [...]}`` or the legacy flat shape
        holding a single endpoint's keys at the top level. Explicit keyword
        arguments override option values.

        Raises
        ------
        RelayConfigError
            When the options fail validation.
        """
        try:
            endpoints = tuple(EndpointConfig.model_validate(dict(item)) for item in _endpoints_from_options(options))
        except ValidationError as exc:
            raise RelayConfigError(f"invalid endpoint configuration: {exc}") from exc

        config_kwargs: dict[str, Any] = {"endpoints": endpoints}
        for option_key, field_name in (
            ("selfId", "self_id"),
            ("serverVersion", "server_version"),
            ("retryDelay", "retry_delay"),
            ("connectTimeout", "connect_timeout"),
            ("clientId", "client_id"),
            ("description", "description"),
        ):
            if option_key in options:
                config_kwargs[field_name] = options[option_key]
        config_kwargs.update(overrides)

        if "self_id" not in config_kwargs:
            raise RelayConfigError("selfId is required")
        try:
            return cls(**config_kwargs)
        except (TypeError, ValueError) as exc:
            raise RelayConfigError(str(exc)) from exc

    @classmethod
    def from_env(cls, **overrides: Any) -> RelayConfig:
        """Create a single-endpoint configuration from environment variables.

        Reads ``SIGNALK_SELF_ID``, ``SIGNALK_SERVER_VERSION``,
        ``SIGNALK_CLOUD_URL``, ``SIGNALK_CLOUD_TOKEN``,
        ``SIGNALK_CLOUD_DATA_TO_SEND`` and ``SIGNALK_CLOUD_RETRY_DELAY``.
        """
        env = os.environ
        options: dict[str, Any] = {}

        for env_key, option_key in (
            ("SIGNALK_SELF_ID", "selfId"),
            ("SIGNALK_SERVER_VERSION", "serverVersion"),
            ("SIGNALK_CLOUD_URL", "url"),
            ("SIGNALK_CLOUD_TOKEN", "jwtToken"),
            ("SIGNALK_CLOUD_DATA_TO_SEND", "dataToSend"),
        ):
            val = env.get(env_key)
            if val is not None:
                options[option_key] = val

        retry_env = env.get("SIGNALK_CLOUD_RETRY_DELAY")
        if retry_env is not None and "retry_delay" not in overrides:
            try:
                options["retryDelay"] = float(retry_env)
            except ValueError as exc:
                raise RelayConfigError(f"invalid SIGNALK_CLOUD_RETRY_DELAY: {retry_env!r}") from exc

        return cls.from_options(options, **overrides)

    def to_options(self) -> dict[str, Any]:
        """Dump to the persisted options shape read by :meth:`from_options`."""
        return {
            "selfId": self.self_id,
            "serverVersion": self.server_version,
            "retryDelay": self.retry_delay,
            "connectTimeout": self.connect_timeout,
            "clientId": self.client_id,
            "description": self.description,
            "endpoints": [endpoint.to_options() for endpoint in self.endpoints],
        }
