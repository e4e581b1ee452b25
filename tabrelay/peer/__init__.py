"""Peer link — WebSocket connection to the browser executor."""

from .backoff import Backoff
from .config import RelayConfig
from .link import LinkState, PeerLink, send_install_frame

__all__ = ["Backoff", "LinkState", "PeerLink", "RelayConfig", "send_install_frame"]
