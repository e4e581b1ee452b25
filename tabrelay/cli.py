"""Command-line client for the tabrelay gateway.

Send one browser command and print the JSON result.

Usage:
    python -m tabrelay.cli navigate url=https://example.com
    python -m tabrelay.cli click selector="#submit-btn"
    python -m tabrelay.cli fill selector="#email" value="user@example.com"
    python -m tabrelay.cli scrape selector=h1 multiple=true
    python -m tabrelay.cli scroll direction=down amount=500
    python -m tabrelay.cli get_title
    python -m tabrelay.cli health

Environment:
    TABRELAY_GATEWAY_HOST   Gateway host (default: localhost)
    TABRELAY_GATEWAY_PORT   Gateway port (default: 7823)
"""

import asyncio
import json
import os
import sys

import aiohttp

import typing as tp

from .commands import ACTIONS
from .peer.config import DEFAULT_GATEWAY_HOST, DEFAULT_GATEWAY_PORT

REQUEST_TIMEOUT = 60


def gateway_url() -> str:
    host = os.environ.get("TABRELAY_GATEWAY_HOST", DEFAULT_GATEWAY_HOST)
    port = os.environ.get("TABRELAY_GATEWAY_PORT", str(DEFAULT_GATEWAY_PORT))
    return f"http://{host}:{port}"


def parse_value(raw: str) -> tp.Any:
    if raw in ("true", "false"):
        return raw == "true"
    if raw.isdigit():
        return int(raw)
    return raw


def parse_params(pairs: tp.List[str]) -> dict:
    """Turn ``key=value`` arguments into a params dict."""
    params = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected key=value, got {pair!r}")
        params[key] = parse_value(value)
    return params


def _print_json(body: tp.Any, raw: bool) -> None:
    if raw:
        print(json.dumps(body))
    else:
        print(json.dumps(body, indent=4))


async def cmd_health(base_url: str, raw: bool = False) -> int:
    timeout = aiohttp.ClientTimeout(total=REQUEST_TIMEOUT)
    async with aiohttp.ClientSession(timeout=timeout) as http:
        async with http.get(f"{base_url}/health") as resp:
            body = await resp.json(content_type=None)
    if not raw:
        print("Gateway status:", file=sys.stderr)
    _print_json(body, raw)
    return 0


async def cmd_send(base_url: str, action: str, params: dict,
                   raw: bool = False, quiet: bool = False) -> int:
    if not quiet:
        print(f"> {action} {json.dumps(params)}", file=sys.stderr)

    timeout = aiohttp.ClientTimeout(total=REQUEST_TIMEOUT)
    async with aiohttp.ClientSession(timeout=timeout) as http:
        async with http.post(f"{base_url}/command", json={"action": action, **params}) as resp:
            status = resp.status
            try:
                body = await resp.json(content_type=None)
            except json.JSONDecodeError:
                body = {"success": False, "error": f"HTTP {status}"}

    if raw:
        _print_json(body, raw=True)
        return 0 if body.get("success") else 1

    if body.get("success"):
        if not quiet:
            print("OK", file=sys.stderr)
        _print_json(body, raw=False)
        return 0

    print(f"Error: {body.get('error', f'HTTP {status}')}", file=sys.stderr)
    _print_json(body, raw=False)
    return 1


async def main(argv: tp.Optional[tp.List[str]] = None) -> int:
    import argparse
    parser = argparse.ArgumentParser(
        description="Send a browser command through the tabrelay gateway",
        epilog=f"Actions: {', '.join(ACTIONS)}, health",
    )
    parser.add_argument("-r", "--raw", action="store_true", help="Output raw JSON")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress status messages")
    parser.add_argument("action")
    parser.add_argument("params", nargs="*", metavar="key=value")
    args = parser.parse_args(argv)

    base_url = gateway_url()
    try:
        if args.action == "health":
            return await cmd_health(base_url, raw=args.raw)
        params = parse_params(args.params)
        return await cmd_send(base_url, args.action, params, raw=args.raw, quiet=args.quiet)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        print(f"Error: Cannot reach gateway at {base_url} ({e})", file=sys.stderr)
        return 1


def run():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
