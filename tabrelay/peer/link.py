"""WebSocket link to the browser executor.

Owns the single duplex connection to the executor, detects its loss,
reconnects with exponential backoff and keeps it alive with periodic
pings. A WebSocket heartbeat on the same interval drops a peer that
stops answering. Nothing else writes to the socket.

Uses aiohttp for WebSocket transport. Outgoing frames go through one
send lock so concurrent submitters never interleave writes.

Retry scheduling is driven by a persisted "desired state" rather than a
long-running loop: ``wake()`` re-evaluates it and arms at most one retry
trigger, so it can be called again after the process resumes without
stacking timers.
"""

import enum
import logging
import asyncio
import ssl as sslmod

import aiohttp

import typing as tp

from ..envelope import PING, CommandEnvelope, ControlFrame, ReplyEnvelope, parse_frame
from ..errors import MalformedMessage, PeerUnavailable
from .backoff import Backoff
from .config import RelayConfig

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 10.0
INSTALL_TIMEOUT = 5.0

Frame = tp.Union[CommandEnvelope, ControlFrame]
Installer = tp.Callable[["PeerLink", dict], tp.Awaitable[None]]


class LinkState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


async def send_install_frame(link: "PeerLink", params: dict) -> None:
    """Ask the executor to (re-)install its page agent into the target tab."""
    await link.send(ControlFrame("install", payload={"tabId": params.get("tabId")}))


class PeerLink:
    """Single WebSocket connection to the executor, with reconnect and keep-alive.

    Events (register with ``on``): ``connected``, ``ready`` (payload is the
    peer version), ``reply`` (a ReplyEnvelope) and ``disconnected``
    (payload is the reason).
    """

    def __init__(
        self,
        config: tp.Optional[RelayConfig] = None,
        installer: tp.Optional[Installer] = None,
    ):
        self.config = config or RelayConfig()
        self.url = self.config.peer_url
        self.backoff = Backoff(self.config.backoff_floor, self.config.backoff_ceiling)
        self.keepalive_interval = self.config.keepalive_interval

        self.state = LinkState.DISCONNECTED
        self.peer_version: tp.Optional[str] = None
        self.attempts = 0
        self.ws: tp.Optional[aiohttp.ClientWebSocketResponse] = None
        self._session: tp.Optional[aiohttp.ClientSession] = None
        self._send_lock = asyncio.Lock()
        self._installer = installer or send_install_frame
        self.event_handlers: tp.Dict[str, tp.List[tp.Callable]] = {}

        self._desired = False
        self._retry_at: tp.Optional[float] = None
        self._connect_task: tp.Optional[asyncio.Task] = None
        self._reader_task: tp.Optional[asyncio.Task] = None
        self._retry_handle: tp.Optional[asyncio.TimerHandle] = None
        self._keepalive_handle: tp.Optional[asyncio.TimerHandle] = None
        self._background: tp.Set[asyncio.Task] = set()

    @property
    def connected(self) -> bool:
        return self.state is LinkState.CONNECTED and self.ws is not None and not self.ws.closed

    # ── lifecycle ──

    async def start(self) -> None:
        """Keep the link up from now on and attempt the first connection."""
        self._desired = True
        self._retry_at = None
        self.wake()

    def wake(self) -> None:
        """Re-evaluate the desired state and arm the next retry if needed.

        Idempotent: a live or connecting link is left alone, and an armed
        retry trigger is never duplicated. A retry whose time already
        passed (e.g. while the process was suspended) fires immediately.
        """
        if not self._desired or self.state is not LinkState.DISCONNECTED:
            return
        if self._connect_task is not None and not self._connect_task.done():
            return

        loop = asyncio.get_running_loop()
        now = loop.time()
        if self._retry_at is None or now >= self._retry_at:
            self._cancel_retry()
            self._retry_at = None
            self._connect_task = loop.create_task(self.connect())
        elif self._retry_handle is None:
            self._retry_handle = loop.call_later(self._retry_at - now, self._on_retry_timer)

    def _on_retry_timer(self) -> None:
        self._retry_handle = None
        self._retry_at = None
        self.wake()

    def _schedule_retry(self, delay: float) -> None:
        if not self._desired:
            return
        self._cancel_retry()
        loop = asyncio.get_running_loop()
        self._retry_at = loop.time() + delay
        self._retry_handle = loop.call_later(delay, self._on_retry_timer)
        logger.info(f"Reconnecting to {self.url} in {delay:.1f}s")

    def _cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    def _ssl_context(self) -> tp.Optional[sslmod.SSLContext]:
        if not self.url.startswith("wss://"):
            return None
        ssl_ctx = sslmod.create_default_context()
        if not self.config.ssl_verify:
            ssl_ctx.check_hostname = False
            ssl_ctx.verify_mode = sslmod.CERT_NONE
        cert_path, key_path = self.config.cert_path, self.config.key_path
        if cert_path and key_path:
            try:
                ssl_ctx.load_cert_chain(certfile=cert_path, keyfile=key_path)
            except (OSError, sslmod.SSLError) as e:
                logger.warning(f"Failed to load client cert/key: {e}")
        if cert_path:
            try:
                ssl_ctx.load_verify_locations(cafile=cert_path)
            except (OSError, sslmod.SSLError) as e:
                logger.warning(f"Failed to load CA cert: {e}")
        return ssl_ctx

    async def connect(self) -> bool:
        """Make one connection attempt. Returns True once connected.

        A no-op while already connecting or connected. On failure the next
        attempt is scheduled after the current backoff delay.
        """
        if self.state is not LinkState.DISCONNECTED:
            return self.connected

        self.state = LinkState.CONNECTING
        self.attempts += 1
        ssl_ctx = self._ssl_context()
        connector = aiohttp.TCPConnector(ssl=ssl_ctx) if ssl_ctx else None
        session = aiohttp.ClientSession(connector=connector)
        try:
            ws = await asyncio.wait_for(
                session.ws_connect(self.url, heartbeat=self.keepalive_interval),
                timeout=CONNECT_TIMEOUT,
            )
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            await session.close()
            self.state = LinkState.DISCONNECTED
            delay = self.backoff.fail()
            logger.warning(f"Connection to {self.url} failed (attempt {self.attempts}): {e}")
            self._schedule_retry(delay)
            return False
        except BaseException:
            await session.close()
            self.state = LinkState.DISCONNECTED
            raise

        self._session = session
        self.ws = ws
        self.state = LinkState.CONNECTED
        self.attempts = 0
        self.backoff.reset()
        self._reader_task = asyncio.get_running_loop().create_task(self._handle_messages(ws))
        self._arm_keepalive()
        logger.info(f"Connected to {self.url}")
        self._emit("connected", self.url)
        return True

    async def stop(self) -> None:
        """Tear the link down and stop reconnecting."""
        self._desired = False
        self._retry_at = None
        self._cancel_retry()
        self._cancel_keepalive()
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
            try:
                await self._connect_task
            except asyncio.CancelledError:
                pass
        if self.ws is not None:
            self._lost(self.ws, "link stopped")
        if self._reader_task is not None:
            await asyncio.gather(self._reader_task, return_exceptions=True)
            self._reader_task = None
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def close(self) -> None:
        await self.stop()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    # ── loss handling ──

    def _lost(self, ws: aiohttp.ClientWebSocketResponse, reason: str) -> None:
        """Transition Connected -> Disconnected for ``ws``; stale sockets are ignored."""
        if ws is not self.ws:
            return
        session = self._session
        self.ws = None
        self._session = None
        self.state = LinkState.DISCONNECTED
        self.peer_version = None
        self._cancel_keepalive()
        logger.warning(f"Peer link lost: {reason}")
        self._emit("disconnected", reason)
        self._spawn(self._close_transport(ws, session))
        self.backoff.reset()
        self._schedule_retry(self.backoff.delay)

    @staticmethod
    async def _close_transport(
        ws: tp.Optional[aiohttp.ClientWebSocketResponse],
        session: tp.Optional[aiohttp.ClientSession],
    ) -> None:
        if ws is not None and not ws.closed:
            try:
                await ws.close()
            except (aiohttp.ClientError, ConnectionError) as e:
                logger.debug(f"Error closing peer socket: {e}")
        if session is not None and not session.closed:
            await session.close()

    async def _handle_messages(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        """Handle incoming frames until the socket closes."""
        reason = "connection closed"
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle_frame(msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    logger.warning("Dropping binary frame from peer")
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    reason = f"WebSocket error: {ws.exception()}"
                    logger.error(reason)
                    break
                elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.CLOSING):
                    break
        except asyncio.CancelledError:
            reason = "reader cancelled"
            raise
        except Exception as e:
            reason = f"message handler error: {e}"
            logger.error(f"Peer message handler error: {e}")
        finally:
            self._lost(ws, reason)

    def _handle_frame(self, text: str) -> None:
        try:
            frame = parse_frame(text)
        except MalformedMessage as e:
            logger.warning(f"Dropping malformed frame from peer: {e} ({text[:200]!r})")
            return

        if isinstance(frame, ReplyEnvelope):
            self._emit("reply", frame)
        elif frame.type == "ready":
            self.peer_version = frame.version
            logger.info(f"Executor ready (v{frame.version})")
            self._emit("ready", frame.version)
        else:
            logger.debug(f"Control frame from peer: {frame.type}")

    # ── sending ──

    async def send(self, frame: Frame) -> None:
        """Write one frame. Raises PeerUnavailable if the link is not up.

        A failed write drops the link (triggering reconnection) instead of
        retrying.
        """
        ws = self.ws
        if not self.connected or ws is None:
            raise PeerUnavailable()
        try:
            async with self._send_lock:
                await ws.send_str(frame.to_json())
        except (ConnectionError, aiohttp.ClientError) as e:
            self._lost(ws, f"send failed: {e}")
            raise PeerUnavailable(f"Browser executor link failed: {e}") from e

    async def deliver(self, envelope: CommandEnvelope, needs_dom: bool = False) -> None:
        """Forward a command, first re-installing the page agent when DOM access is needed."""
        if not self.connected:
            raise PeerUnavailable()
        if needs_dom:
            await self._install(envelope.params)
        await self.send(envelope)

    async def _install(self, params: dict) -> None:
        try:
            await asyncio.wait_for(self._installer(self, params), timeout=INSTALL_TIMEOUT)
        except Exception as e:
            # agent may already be present in the page
            logger.debug(f"Executor install skipped: {e}")

    # ── keep-alive ──

    def _arm_keepalive(self) -> None:
        self._cancel_keepalive()
        loop = asyncio.get_running_loop()
        self._keepalive_handle = loop.call_later(self.keepalive_interval, self._keepalive_tick)

    def _cancel_keepalive(self) -> None:
        if self._keepalive_handle is not None:
            self._keepalive_handle.cancel()
            self._keepalive_handle = None

    def _keepalive_tick(self) -> None:
        self._keepalive_handle = None
        if not self.connected:
            self.wake()
            return
        self._spawn(self._ping())
        self._arm_keepalive()

    async def _ping(self) -> None:
        try:
            await self.send(PING)
        except PeerUnavailable:
            pass

    # ── events ──

    def on(self, event_type: str, handler: tp.Callable) -> None:
        """Register an event handler for link events."""
        if event_type not in self.event_handlers:
            self.event_handlers[event_type] = []
        self.event_handlers[event_type].append(handler)

    def off(self, event_type: str, handler: tp.Optional[tp.Callable] = None) -> bool:
        """Unregister event handler(s)."""
        if event_type not in self.event_handlers:
            return False
        if handler is None:
            del self.event_handlers[event_type]
            return True
        try:
            self.event_handlers[event_type].remove(handler)
            if not self.event_handlers[event_type]:
                del self.event_handlers[event_type]
            return True
        except ValueError:
            return False

    def _emit(self, event_type: str, payload: tp.Any) -> None:
        """Call handlers in registration order; coroutine handlers run as tasks."""
        for handler in list(self.event_handlers.get(event_type, [])):
            try:
                result = handler(payload)
                if asyncio.iscoroutine(result):
                    self._spawn(result)
            except Exception as e:
                logger.error(f"Event handler for '{event_type}' failed: {e}")

    def _spawn(self, coro: tp.Coroutine) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._reap)

    def _reap(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background task failed: {task.exception()}")

    def status(self) -> dict:
        next_retry = None
        if self._retry_at is not None:
            next_retry = max(0.0, self._retry_at - asyncio.get_running_loop().time())
        return {
            "state": self.state.value,
            "url": self.url,
            "peerVersion": self.peer_version,
            "attempts": self.attempts,
            "backoff": self.backoff.delay,
            "nextRetryIn": next_retry,
        }
