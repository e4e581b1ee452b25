"""HTTP gateway in front of the command relay.

Endpoints:
    GET  /health          -> {status, peerConnected, pendingCount, ...}
    POST /command         -> body {action, ...params}
    POST /<action>        -> body {...params}, one route per catalogue action

Every command answers ``{success: true, data}`` or
``{success: false, error, code}`` with an HTTP status matching the error.
"""

import json
import logging

from aiohttp import web

import typing as tp

from .commands import ACTIONS
from .peer import PeerLink
from .relay import CommandRelay

logger = logging.getLogger(__name__)

RELAY_KEY = web.AppKey("relay", CommandRelay)
LINK_KEY = web.AppKey("link", PeerLink)

MAX_BODY = 10 * 1024 * 1024


def _fail(status: int, error: str, **extra) -> web.Response:
    return web.json_response({"success": False, "error": error, **extra}, status=status)


def _endpoints() -> tp.List[str]:
    return ["/health", "/command", *(f"/{name}" for name in ACTIONS)]


async def _read_body(request: web.Request) -> dict:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise web.HTTPBadRequest(
            text=json.dumps({"success": False, "error": "Invalid JSON body"}),
            content_type="application/json",
        ) from None
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(
            text=json.dumps({"success": False, "error": "Body must be a JSON object"}),
            content_type="application/json",
        )
    return body


async def _run(request: web.Request, action: str, params: dict) -> web.Response:
    relay = request.app[RELAY_KEY]
    timeout = params.pop("timeout", None)
    if timeout is not None:
        try:
            timeout = float(timeout)
        except (TypeError, ValueError):
            return _fail(400, f"Invalid timeout: {timeout!r}", code="invalid_params")

    result = await relay.submit(action, params, timeout=timeout)
    if result.ok:
        return web.json_response(result.to_dict())
    logger.info(f"{action} failed: [{result.error.code}] {result.error.message}")
    return web.json_response(result.to_dict(), status=result.error.status)


async def health(request: web.Request) -> web.Response:
    link = request.app[LINK_KEY]
    relay = request.app[RELAY_KEY]
    return web.json_response({
        "status": "ok",
        "peerConnected": link.connected,
        "pendingCount": relay.pending_count,
        "peer": link.status(),
    })


async def command(request: web.Request) -> web.Response:
    body = await _read_body(request)
    action = body.pop("action", None)
    if not action:
        return _fail(400, "Missing 'action' field", code="invalid_params")
    return await _run(request, str(action), body)


def _shortcut(action: str):
    async def handler(request: web.Request) -> web.Response:
        return await _run(request, action, await _read_body(request))
    handler.__name__ = f"shortcut_{action}"
    return handler


@web.middleware
async def json_errors(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPNotFound:
        return _fail(404, "Not found", available=_endpoints())
    except web.HTTPMethodNotAllowed as e:
        return _fail(405, f"Method {request.method} not allowed", allowed=sorted(e.allowed_methods))
    except web.HTTPException:
        raise
    except Exception:
        logger.exception(f"Unhandled error serving {request.method} {request.path}")
        return _fail(500, "Internal server error")


def create_app(relay: CommandRelay, link: PeerLink) -> web.Application:
    """Build the gateway application around an explicit relay and link."""
    app = web.Application(middlewares=[json_errors], client_max_size=MAX_BODY)
    app[RELAY_KEY] = relay
    app[LINK_KEY] = link
    app.router.add_get("/health", health)
    app.router.add_post("/command", command)
    for name in ACTIONS:
        app.router.add_post(f"/{name}", _shortcut(name))
    return app
