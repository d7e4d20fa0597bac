"""Endpoint discovery.

A cloud server is configured by its base URL. ``GET <base>/signalk``
returns the actual endpoints::

    {"endpoints": {"v1": {"version": "1.0.0",
                          "signalk-http": "http://cloud.example/signalk/v1/api/",
                          "signalk-ws": "ws://cloud.example/signalk/v1/stream"}}}

Servers behind TLS publish ``signalk-https``/``signalk-wss`` instead (or in
addition); the secure variant is preferred.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import aiohttp

from signalk_cloud._constants import DISCOVERY_PATH
from signalk_cloud._redact import redact_for_log
from signalk_cloud.exceptions import DiscoveryError

_logger = logging.getLogger(__name__)

_SCHEME_REWRITES: tuple[tuple[str, str], ...] = (
    ("ws:", "http:"),
    ("wss:", "https:"),
)
_STREAM_PARAMS = frozenset({"subscribe", "updateRate", "staticUpdateRate"})


@dataclass(frozen=True)
class DiscoveredEndpoints:
    """Resolved endpoints of one cloud server."""

    stream_url: str
    http_url: str | None


def normalize_base_url(url: str) -> str:
    """Map a legacy websocket base URL onto its plain HTTP equivalent."""
    value = url.strip()
    lowered = value.lower()
    for legacy, plain in _SCHEME_REWRITES:
        if lowered.startswith(legacy):
            value = plain + value[len(legacy) :]
            break
    return value.rstrip("/")


def _format_rate(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def build_stream_url(stream_url: str, *, update_rate: float, static_update_rate: float) -> str:
    """Append the subscription/rate query to a discovered stream URL."""
    parts = urlsplit(stream_url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in _STREAM_PARAMS]
    query.extend(
        (
            ("subscribe", "none"),
            ("updateRate", _format_rate(update_rate)),
            ("staticUpdateRate", _format_rate(static_update_rate)),
        )
    )
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def _pick(endpoints: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = endpoints.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def parse_discovery_document(
    document: Any,
    *,
    update_rate: float,
    static_update_rate: float,
    url: str = "",
) -> DiscoveredEndpoints:
    """Select stream and HTTP endpoints from a discovery document.

    Raises
    ------
    DiscoveryError
        When the document has no ``endpoints.v1`` map or no stream endpoint.
    """
    endpoints = document.get("endpoints") if isinstance(document, Mapping) else None
    v1 = endpoints.get("v1") if isinstance(endpoints, Mapping) else None
    if not isinstance(v1, Mapping):
        raise DiscoveryError(f"Missing endpoints.v1 in discovery response from {url}", url=url)

    stream = _pick(v1, "signalk-wss", "signalk-ws")
    if stream is None:
        raise DiscoveryError(f"No stream endpoint in discovery response from {url}", url=url)

    http_url = _pick(v1, "signalk-https", "signalk-http")
    if http_url is not None and not http_url.endswith("/"):
        http_url += "/"

    return DiscoveredEndpoints(
        stream_url=build_stream_url(stream, update_rate=update_rate, static_update_rate=static_update_rate),
        http_url=http_url,
    )


async def resolve_endpoints(
    http: aiohttp.ClientSession,
    base_url: str,
    *,
    update_rate: float,
    static_update_rate: float,
    timeout: float = 30.0,
) -> DiscoveredEndpoints:
    """Run discovery against *base_url*.

    Every failure (request error, non-200, bad body) surfaces as
    :class:`DiscoveryError`.
    """
    info_url = f"{normalize_base_url(base_url)}{DISCOVERY_PATH}"
    _logger.debug("GET %s", info_url)

    try:
        async with http.get(info_url, timeout=aiohttp.ClientTimeout(total=timeout)) as resp:
            text = await resp.text()
            if resp.status != 200:
                raise DiscoveryError(
                    f"Bad status code from cloud server {resp.status}",
                    status_code=resp.status,
                    url=info_url,
                )
    except DiscoveryError:
        raise
    except (aiohttp.ClientError, TimeoutError, ValueError) as exc:
        raise DiscoveryError(f"Error connecting to cloud server {exc}", url=info_url) from exc

    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        raise DiscoveryError(f"Invalid JSON from {info_url}: {text[:200]}", status_code=200, url=info_url) from exc

    _logger.debug("server info %s", redact_for_log(document))
    return parse_discovery_document(
        document,
        update_rate=update_rate,
        static_update_rate=static_update_rate,
        url=info_url,
    )
