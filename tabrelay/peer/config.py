"""Relay and peer link configuration.

Explicit parameters win over TABRELAY_* environment variables, which win
over the built-in defaults. There are no config files.
"""

import os
from urllib.parse import urlparse

import typing as tp

DEFAULT_PEER_URL = "ws://localhost:7822"
DEFAULT_GATEWAY_HOST = "localhost"
DEFAULT_GATEWAY_PORT = 7823


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def to_ws_url(url: str) -> str:
    """Convert an HTTP(S) URL to the matching WebSocket URL."""
    parsed = urlparse(url if "://" in url else f"ws://{url}")
    if parsed.scheme in ("https", "wss"):
        ws_scheme = "wss"
    else:
        ws_scheme = "ws"
    return parsed._replace(scheme=ws_scheme).geturl()


class RelayConfig:
    """Relay settings: peer endpoint, gateway bind address, timers."""

    def __init__(
        self,
        peer_url: tp.Optional[str] = None,
        gateway_host: tp.Optional[str] = None,
        gateway_port: tp.Optional[int] = None,
        command_timeout: tp.Optional[float] = None,
        navigate_timeout: tp.Optional[float] = None,
        keepalive_interval: tp.Optional[float] = None,
        backoff_floor: tp.Optional[float] = None,
        backoff_ceiling: tp.Optional[float] = None,
        cert_path: tp.Optional[str] = None,
        key_path: tp.Optional[str] = None,
        ssl_verify: bool = True,
    ):
        """
        Args:
            peer_url: Executor WebSocket endpoint (ws://host:port).
                      Defaults to TABRELAY_PEER_URL env var.
            gateway_host: Interface the HTTP gateway binds to.
                          Defaults to TABRELAY_GATEWAY_HOST env var.
            gateway_port: HTTP gateway port. Defaults to TABRELAY_GATEWAY_PORT.
            command_timeout: Seconds to wait for a reply to a command.
            navigate_timeout: Seconds to wait for a navigation reply.
            keepalive_interval: Seconds between liveness pings.
            backoff_floor: First reconnect delay in seconds.
            backoff_ceiling: Largest reconnect delay in seconds.
            cert_path: Path to client certificate PEM file.
                       Defaults to TABRELAY_CERT_PATH env var.
            key_path: Path to client key PEM file.
                      Defaults to TABRELAY_KEY_PATH env var.
            ssl_verify: Verify SSL certificates. Set False for self-signed.
        """
        self.peer_url = to_ws_url(peer_url or os.getenv("TABRELAY_PEER_URL", DEFAULT_PEER_URL))
        self.gateway_host = gateway_host or os.getenv("TABRELAY_GATEWAY_HOST", DEFAULT_GATEWAY_HOST)
        self.gateway_port = (
            gateway_port if gateway_port is not None
            else _env_int("TABRELAY_GATEWAY_PORT", DEFAULT_GATEWAY_PORT)
        )
        self.command_timeout = _pick(command_timeout, "TABRELAY_COMMAND_TIMEOUT", 15.0)
        self.navigate_timeout = _pick(navigate_timeout, "TABRELAY_NAVIGATE_TIMEOUT", 30.0)
        self.keepalive_interval = _pick(keepalive_interval, "TABRELAY_KEEPALIVE", 24.0)
        self.backoff_floor = _pick(backoff_floor, "TABRELAY_BACKOFF_FLOOR", 1.0)
        self.backoff_ceiling = _pick(backoff_ceiling, "TABRELAY_BACKOFF_CEILING", 30.0)
        self.cert_path = cert_path or os.getenv("TABRELAY_CERT_PATH")
        self.key_path = key_path or os.getenv("TABRELAY_KEY_PATH")
        self.ssl_verify = ssl_verify

        for name in ("command_timeout", "navigate_timeout", "keepalive_interval", "backoff_floor"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.backoff_ceiling < self.backoff_floor:
            raise ValueError("backoff_ceiling must not be below backoff_floor")

    def __repr__(self) -> str:
        return (
            f"RelayConfig(peer_url={self.peer_url!r}, "
            f"gateway={self.gateway_host}:{self.gateway_port}, "
            f"command_timeout={self.command_timeout}, navigate_timeout={self.navigate_timeout}, "
            f"keepalive={self.keepalive_interval}, "
            f"backoff={self.backoff_floor}..{self.backoff_ceiling})"
        )


def _pick(explicit: tp.Optional[float], env_name: str, default: float) -> float:
    if explicit is not None:
        return float(explicit)
    return _env_float(env_name, default)
