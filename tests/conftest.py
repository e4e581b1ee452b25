"""
Shared fixtures for tabrelay tests.

- FakeLink: in-memory stand-in for PeerLink so relay behaviour can be
  driven deterministically (replies, drops, send failures).
- executor_server: a real ExecutorServer on an ephemeral port.
"""

import asyncio

import pytest
import pytest_asyncio

from tabrelay.envelope import CommandEnvelope, ReplyEnvelope
from tabrelay.errors import PeerUnavailable
from tabrelay.executor import ExecutorServer, PageExecutor
from tabrelay.peer import RelayConfig

SAMPLE_HTML = """
<html>
  <head>
    <title>Sample page</title>
    <meta name="description" content="A page for tests">
  </head>
  <body>
    <h1>Welcome</h1>
    <div id="x">Hello</div>
    <p class="note">First note</p>
    <p class="note">Second note</p>
    <form id="login" action="/login">
      <label for="email">Email</label>
      <input id="email" name="email" type="text">
      <textarea id="bio"></textarea>
      <button type="submit">Sign in</button>
    </form>
    <a href="/about">About us</a>
    <h2>Details</h2>
  </body>
</html>
"""


class FakeLink:
    """Quacks like PeerLink: connected, deliver(), on()/off(), status()."""

    def __init__(self, connected: bool = True, config: RelayConfig = None):
        self.config = config or RelayConfig(
            peer_url="ws://fake:1", command_timeout=5.0, navigate_timeout=10.0,
        )
        self._connected = connected
        self.sent: list = []
        self.dom_deliveries = 0
        self.fail_next_send = False
        self.event_handlers: dict = {}

    @property
    def connected(self) -> bool:
        return self._connected

    async def deliver(self, envelope: CommandEnvelope, needs_dom: bool = False) -> None:
        if not self._connected:
            raise PeerUnavailable()
        if needs_dom:
            self.dom_deliveries += 1
        await asyncio.sleep(0)
        if self.fail_next_send:
            self.fail_next_send = False
            self.drop("send failed")
            raise PeerUnavailable("Browser executor link failed: send failed")
        self.sent.append(envelope)

    def on(self, event_type, handler):
        self.event_handlers.setdefault(event_type, []).append(handler)

    def off(self, event_type, handler=None):
        handlers = self.event_handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def emit(self, event_type, payload):
        for handler in list(self.event_handlers.get(event_type, [])):
            handler(payload)

    def reply(self, request_id: str, data=None, error: str = None) -> None:
        if error is None:
            self.emit("reply", ReplyEnvelope(request_id, True, data=data))
        else:
            self.emit("reply", ReplyEnvelope(request_id, False, error=error))

    def drop(self, reason: str = "connection closed") -> None:
        self._connected = False
        self.emit("disconnected", reason)

    def status(self) -> dict:
        return {"state": "connected" if self._connected else "disconnected"}

    async def wait_sent(self, count: int = 1) -> None:
        for _ in range(200):
            if len(self.sent) >= count:
                return
            await asyncio.sleep(0)
        raise AssertionError(f"expected {count} deliveries, saw {len(self.sent)}")


@pytest.fixture
def fake_link():
    return FakeLink()


@pytest.fixture
def sample_html():
    return SAMPLE_HTML


@pytest.fixture
def page_executor():
    executor = PageExecutor(html=SAMPLE_HTML, url="https://example.com/")
    executor.install()
    return executor


@pytest.fixture
def fast_config():
    """Short timers so link tests finish quickly."""
    def make(peer_url: str, **overrides) -> RelayConfig:
        settings = dict(
            peer_url=peer_url,
            command_timeout=2.0,
            navigate_timeout=2.0,
            keepalive_interval=0.05,
            backoff_floor=0.01,
            backoff_ceiling=0.08,
        )
        settings.update(overrides)
        return RelayConfig(**settings)
    return make


@pytest_asyncio.fixture
async def executor_server():
    server = ExecutorServer(PageExecutor(
        html=SAMPLE_HTML,
        url="https://example.com/",
        pages={"https://example.com/next": "<html><head><title>Next</title></head>"
                                          "<body><p id='n'>Next page</p></body></html>"},
    ))
    await server.start("127.0.0.1", 0)
    yield server
    await server.stop()


async def _wait_for(predicate, timeout: float = 2.0, interval: float = 0.01):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def wait_until():
    """Poll a predicate until true or fail the test."""
    return _wait_for
