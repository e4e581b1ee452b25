"""Tests for the HTTP gateway routes and error mapping."""

import asyncio

import pytest
import pytest_asyncio
from aiohttp import test_utils

from tabrelay.gateway import create_app
from tabrelay.relay import CommandRelay

from .conftest import FakeLink


class EchoLink(FakeLink):
    """Answers every command on the next loop iteration with its params."""

    def __init__(self, answer: bool = True, **kwargs):
        super().__init__(**kwargs)
        self.answer = answer

    async def deliver(self, envelope, needs_dom=False):
        await super().deliver(envelope, needs_dom)
        if not self.answer:
            return
        if envelope.params.get("selector") == "#missing":
            reply = dict(error="Element not found: #missing")
        else:
            reply = dict(data={"action": envelope.action, "params": envelope.params})
        asyncio.get_running_loop().call_soon(lambda: self.reply(envelope.id, **reply))


@pytest_asyncio.fixture
async def make_client():
    clients = []

    async def make(link):
        client = test_utils.TestClient(test_utils.TestServer(create_app(CommandRelay(link), link)))
        await client.start_server()
        clients.append(client)
        return client

    yield make
    for client in clients:
        await client.close()


@pytest.mark.asyncio
async def test_health_reports_link_and_pending(make_client):
    client = await make_client(EchoLink())
    resp = await client.get("/health")
    assert resp.status == 200
    body = await resp.json()
    assert body["status"] == "ok"
    assert body["peerConnected"] is True
    assert body["pendingCount"] == 0
    assert body["peer"] == {"state": "connected"}


@pytest.mark.asyncio
async def test_command_endpoint_success(make_client):
    link = EchoLink()
    client = await make_client(link)
    resp = await client.post("/command", json={"action": "navigate", "url": "example.com"})
    assert resp.status == 200
    body = await resp.json()
    assert body == {
        "success": True,
        "data": {"action": "navigate", "params": {"url": "https://example.com"}},
    }


@pytest.mark.asyncio
async def test_shortcut_route_uses_body_as_params(make_client):
    client = await make_client(EchoLink())
    resp = await client.post("/click", json={"selector": "#go"})
    assert resp.status == 200
    assert (await resp.json())["data"] == {"action": "click", "params": {"selector": "#go"}}


@pytest.mark.asyncio
async def test_shortcut_route_without_body(make_client):
    client = await make_client(EchoLink())
    resp = await client.post("/get_title")
    assert resp.status == 200
    assert (await resp.json())["data"]["action"] == "get_title"


@pytest.mark.asyncio
async def test_executor_failure_is_500_with_message(make_client):
    client = await make_client(EchoLink())
    resp = await client.post("/fill", json={"selector": "#missing", "value": "x"})
    assert resp.status == 500
    assert await resp.json() == {
        "success": False, "error": "Element not found: #missing", "code": "executor_error",
    }


@pytest.mark.asyncio
async def test_missing_action_is_400(make_client):
    client = await make_client(EchoLink())
    resp = await client.post("/command", json={"selector": "#go"})
    assert resp.status == 400
    assert "action" in (await resp.json())["error"]


@pytest.mark.asyncio
async def test_invalid_json_is_400(make_client):
    client = await make_client(EchoLink())
    resp = await client.post(
        "/command", data="{not json", headers={"Content-Type": "application/json"},
    )
    assert resp.status == 400
    assert (await resp.json())["error"] == "Invalid JSON body"

    resp = await client.post("/command", json=["click"])
    assert resp.status == 400


@pytest.mark.asyncio
async def test_unknown_action_and_bad_params_are_400(make_client):
    link = EchoLink()
    client = await make_client(link)

    resp = await client.post("/command", json={"action": "teleport"})
    assert resp.status == 400
    assert (await resp.json())["code"] == "unknown_action"

    resp = await client.post("/click", json={})
    assert resp.status == 400
    assert (await resp.json())["code"] == "invalid_params"
    assert link.sent == []


@pytest.mark.asyncio
async def test_disconnected_peer_is_503(make_client):
    client = await make_client(EchoLink(connected=False))
    resp = await client.post("/get_title")
    assert resp.status == 503
    body = await resp.json()
    assert body["code"] == "peer_unavailable"
    assert body["success"] is False


@pytest.mark.asyncio
async def test_timeout_field_bounds_the_wait(make_client):
    client = await make_client(EchoLink(answer=False))
    resp = await client.post("/command", json={"action": "get_title", "timeout": 0.05})
    assert resp.status == 504
    body = await resp.json()
    assert body["code"] == "timeout"
    assert "get_title" in body["error"]

    resp = await client.post("/command", json={"action": "get_title", "timeout": "soon"})
    assert resp.status == 400


@pytest.mark.asyncio
async def test_unknown_route_lists_endpoints(make_client):
    client = await make_client(EchoLink())
    resp = await client.get("/nope")
    assert resp.status == 404
    available = (await resp.json())["available"]
    assert "/health" in available
    assert "/command" in available
    assert "/get_text" in available


@pytest.mark.asyncio
async def test_wrong_method_is_405(make_client):
    client = await make_client(EchoLink())
    resp = await client.get("/command")
    assert resp.status == 405


@pytest.mark.asyncio
@pytest.mark.parametrize("timeout", ["inf", "nan", "-inf", 0])
async def test_unbounded_timeout_is_400(make_client, timeout):
    link = EchoLink(answer=False)
    client = await make_client(link)
    resp = await client.post("/command", json={"action": "get_title", "timeout": timeout})
    assert resp.status == 400
    assert (await resp.json())["code"] == "invalid_params"
    assert link.sent == []
