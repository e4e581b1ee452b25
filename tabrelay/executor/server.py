"""Executor host — serves a PageExecutor over the relay's WebSocket protocol.

Stands in for the in-browser agent: accepts one controller connection,
announces itself with a ``ready`` frame, answers every command frame with
a reply envelope, and handles ``install``/``ping`` control frames.

Usage:
    python -m tabrelay.executor.server --html page.html
    python -m tabrelay.executor.server --port 7822 --page https://example.com=example.html
"""

import asyncio
import logging
import os
import signal
from pathlib import Path

import aiohttp
from aiohttp import web

import typing as tp

from .. import __version__
from ..envelope import PONG, CommandEnvelope, ControlFrame, ReplyEnvelope, parse_command
from ..errors import ExecutorError, MalformedMessage
from .actions import PageExecutor

logger = logging.getLogger(__name__)


class ExecutorServer:
    """WebSocket endpoint driving a PageExecutor.

    A new controller connection takes over from the previous one, so a
    relay that reconnects after a network blip is never locked out by its
    own half-open socket.
    """

    def __init__(self, executor: tp.Optional[PageExecutor] = None, version: str = __version__):
        self.executor = executor or PageExecutor()
        self.version = version
        self.controller: tp.Optional[web.WebSocketResponse] = None
        self.commands_handled = 0
        self._runner: tp.Optional[web.AppRunner] = None
        self.url: tp.Optional[str] = None

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/", self.handle_ws)
        return app

    async def start(self, host: str = "localhost", port: int = 7822) -> str:
        self._runner = web.AppRunner(self.make_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, host, port)
        await site.start()
        bound_host, bound_port = self._runner.addresses[0][:2]
        if ":" in bound_host:
            bound_host = f"[{bound_host}]"
        self.url = f"ws://{bound_host}:{bound_port}/"
        logger.info(f"Executor listening on {self.url}")
        return self.url

    async def stop(self) -> None:
        await self.drop_controller()
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    async def drop_controller(self) -> None:
        """Close the current controller connection, if any."""
        if self.controller is not None and not self.controller.closed:
            await self.controller.close(code=aiohttp.WSCloseCode.GOING_AWAY, message=b"executor closing")

    async def handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        previous, self.controller = self.controller, ws
        if previous is not None and not previous.closed:
            logger.info("New controller connected, closing the previous one")
            await previous.close(code=aiohttp.WSCloseCode.GOING_AWAY, message=b"replaced")

        logger.info(f"Controller connected from {request.remote}")
        await ws.send_str(ControlFrame("ready", version=self.version).to_json())

        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self._handle_frame(ws, msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error(f"WebSocket error: {ws.exception()}")
                    break
        finally:
            if self.controller is ws:
                self.controller = None
            logger.info("Controller disconnected")
        return ws

    async def _handle_frame(self, ws: web.WebSocketResponse, text: str) -> None:
        try:
            frame = parse_command(text)
        except MalformedMessage as e:
            logger.warning(f"Dropping malformed frame from controller: {e}")
            return

        if isinstance(frame, ControlFrame):
            if frame.type == "ping":
                await ws.send_str(PONG.to_json())
            elif frame.type == "install":
                try:
                    self.executor.install(frame.payload.get("tabId"))
                except ExecutorError as e:
                    logger.debug(f"Install failed: {e}")
            return

        reply = self.run(frame)
        await ws.send_str(reply.to_json())

    def run(self, command: CommandEnvelope) -> ReplyEnvelope:
        """Execute one command; every failure becomes an error reply."""
        self.commands_handled += 1
        try:
            data = self.executor.execute(command.action, command.params)
        except ExecutorError as e:
            logger.info(f"{command.action} failed: {e}")
            return ReplyEnvelope(command.id, False, error=str(e))
        except Exception as e:
            logger.exception(f"Unexpected error running {command.action}")
            return ReplyEnvelope(command.id, False, error=f"{type(e).__name__}: {e}")
        return ReplyEnvelope(command.id, True, data=data)


def _load_pages(items: tp.List[str]) -> tp.Dict[str, str]:
    pages = {}
    for item in items:
        url, _, path = item.rpartition("=")
        if not url or not path:
            raise SystemExit(f"--page expects URL=FILE, got {item!r}")
        pages[url] = Path(path).read_text()
    return pages


async def main():
    import argparse
    parser = argparse.ArgumentParser(description="Static-page browser executor")
    parser.add_argument("--host", default="localhost")
    parser.add_argument("--port", type=int, default=7822)
    parser.add_argument("--html", help="HTML file loaded into the initial tab")
    parser.add_argument("--url", default="about:blank", help="URL reported for the initial tab")
    parser.add_argument("--page", action="append", default=[], metavar="URL=FILE",
                        help="Page served when navigating to URL (repeatable)")
    parser.add_argument("--strict", action="store_true",
                        help="Fail navigation to URLs not registered with --page")
    parser.add_argument("--log-level", default=os.environ.get("TABRELAY_LOG_LEVEL", "INFO"))
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    markup = Path(args.html).read_text() if args.html else None
    executor = PageExecutor(html=markup, url=args.url, pages=_load_pages(args.page), strict=args.strict)
    server = ExecutorServer(executor)
    await server.start(args.host, args.port)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    try:
        await stop.wait()
    finally:
        logger.info("Shutting down")
        await server.stop()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
