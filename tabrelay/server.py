"""tabrelay server — HTTP gateway plus the peer link to the browser executor.

Connects (and keeps reconnecting) to the executor WebSocket and serves
the command API that forwards to it.

Usage:
    python -m tabrelay.server
    python -m tabrelay.server --peer-url ws://localhost:7822 --port 7823
"""

import asyncio
import logging
import os
import signal

from aiohttp import web

import typing as tp

from .gateway import create_app
from .peer import PeerLink, RelayConfig
from .relay import CommandRelay

logger = logging.getLogger("tabrelay.server")


class RelayServer:
    """Owns the peer link, the relay and the gateway runner."""

    def __init__(self, config: tp.Optional[RelayConfig] = None):
        self.config = config or RelayConfig()
        self.link = PeerLink(self.config)
        self.relay = CommandRelay(self.link, self.config)
        self.app = create_app(self.relay, self.link)
        self._runner: tp.Optional[web.AppRunner] = None
        self.url: tp.Optional[str] = None

        self.link.on("ready", self._on_peer_ready)
        self.link.on("disconnected", self._on_peer_lost)

    async def start(self) -> str:
        """Start serving the gateway and connecting to the executor."""
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.config.gateway_host, self.config.gateway_port)
        await site.start()
        host, port = self._runner.addresses[0][:2]
        if ":" in host:
            host = f"[{host}]"
        self.url = f"http://{host}:{port}"
        logger.info(f"Gateway listening on {self.url}")
        logger.info("Endpoints: GET /health, POST /command, POST /<action>")

        await self.link.start()
        logger.info(f"Peer link started ({self.config.peer_url})")
        return self.url

    def _on_peer_ready(self, version):
        logger.info(f"Browser executor ready (v{version})")

    def _on_peer_lost(self, reason):
        logger.info(f"Browser executor gone ({reason})")

    async def stop(self):
        failed = self.relay.shutdown()
        if failed:
            logger.info(f"Failed {failed} pending command(s) on shutdown")
        await self.link.stop()
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()


async def main():
    import argparse
    parser = argparse.ArgumentParser(description="tabrelay command relay")
    parser.add_argument("--peer-url", default=None, help="Executor WebSocket URL")
    parser.add_argument("--host", default=None, help="Gateway bind host")
    parser.add_argument("--port", type=int, default=None, help="Gateway port")
    parser.add_argument("--timeout", type=float, default=None, help="Command timeout (seconds)")
    parser.add_argument("--log-level", default=os.environ.get("TABRELAY_LOG_LEVEL", "INFO"))
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    config = RelayConfig(
        peer_url=args.peer_url,
        gateway_host=args.host,
        gateway_port=args.port,
        command_timeout=args.timeout,
    )
    logger.info(f"Starting with {config!r}")
    server = RelayServer(config)
    await server.start()

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
