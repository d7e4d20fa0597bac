#!/usr/bin/env python3
"""Discovery probe for a Signal K cloud server.

Resolves the stream and HTTP endpoints the relay would use for a base URL
and optionally opens the stream to print what the server sends:
1) GET <base>/signalk,
2) pick the stream endpoint and build the stream URL,
3) with --listen, connect and print inbound messages.

Useful to check a server before adding it to the relay options.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
from pathlib import Path

import aiohttp

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from signalk_cloud import RelayConfig  # noqa: E402
from signalk_cloud._redact import redact_for_log  # noqa: E402
from signalk_cloud.discovery import DiscoveredEndpoints, resolve_endpoints  # noqa: E402
from signalk_cloud.exceptions import DiscoveryError, RelayConfigError  # noqa: E402

_LOG = logging.getLogger("discovery_probe")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Resolve Signal K cloud endpoints for a base URL.",
    )
    parser.add_argument(
        "url",
        nargs="?",
        default=None,
        help="Base URL of the cloud server (default: SIGNALK_CLOUD_URL).",
    )
    parser.add_argument(
        "--token",
        default=None,
        help="JWT sent on the stream handshake (default: SIGNALK_CLOUD_TOKEN).",
    )
    parser.add_argument(
        "--update-rate",
        type=float,
        default=30,
        help="updateRate query value in seconds.",
    )
    parser.add_argument(
        "--static-update-rate",
        type=float,
        default=300,
        help="staticUpdateRate query value in seconds.",
    )
    parser.add_argument(
        "--listen",
        type=int,
        default=0,
        help="Open the stream and print messages for N seconds (0 = resolve only).",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Pretty-print inbound JSON messages.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _print_endpoints(base_url: str, found: DiscoveredEndpoints) -> None:
    print(f"[probe] base   : {base_url}")
    print(f"[probe] stream : {found.stream_url}")
    print(f"[probe] http   : {found.http_url or '-'}")


async def _listen(http: aiohttp.ClientSession, stream_url: str, token: str | None, args: argparse.Namespace) -> int:
    headers = {"Authorization": f"JWT {token}"} if token else {}
    _LOG.debug("handshake headers %s", redact_for_log(headers))
    count = 0
    deadline = time.monotonic() + args.listen
    async with http.ws_connect(stream_url, headers=headers) as ws:
        print(f"[probe] connected, listening for {args.listen}s")
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                msg = await ws.receive(timeout=remaining)
            except TimeoutError:
                break
            if msg.type != aiohttp.WSMsgType.TEXT:
                print(f"[probe] {msg.type.name}")
                break
            count += 1
            if args.json:
                try:
                    text = json.dumps(redact_for_log(json.loads(msg.data)), indent=2)
                except json.JSONDecodeError:
                    text = msg.data
            else:
                text = msg.data
            print(f"[probe] msg#{count} {text}")
    return count


async def _run(args: argparse.Namespace, base_url: str, token: str | None) -> int:
    async with aiohttp.ClientSession() as http:
        try:
            found = await resolve_endpoints(
                http,
                base_url,
                update_rate=args.update_rate,
                static_update_rate=args.static_update_rate,
            )
        except DiscoveryError as exc:
            print(f"[probe] Discovery failed: {exc}", file=sys.stderr)
            return 2
        _print_endpoints(base_url, found)

        if args.listen <= 0:
            return 0
        try:
            count = await _listen(http, found.stream_url, token, args)
        except aiohttp.ClientError as exc:
            print(f"[probe] Stream failed: {exc}", file=sys.stderr)
            return 3
        print(f"[probe] received {count} messages")
    return 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    base_url, token = args.url, args.token
    if base_url is None or token is None:
        try:
            config = RelayConfig.from_env(self_id="probe")
        except RelayConfigError as exc:
            print(f"[probe] Invalid environment: {exc}", file=sys.stderr)
            return 2
        endpoint = config.endpoints[0] if config.endpoints else None
        if base_url is None and endpoint is not None:
            base_url = endpoint.url
        if token is None and endpoint is not None:
            token = endpoint.jwt_token
    if not base_url:
        print("[probe] No URL given and SIGNALK_CLOUD_URL is not set", file=sys.stderr)
        return 2

    try:
        return asyncio.run(_run(args, base_url, token))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(_main())
