"""tabrelay — relay browser commands to a live executor over one WebSocket."""

__version__ = "0.1.0"

from .errors import (  # noqa: E402
    CommandTimeout,
    ElementNotFound,
    ExecutorError,
    InvalidParams,
    MalformedMessage,
    PeerDisconnected,
    PeerUnavailable,
    RelayError,
    UnknownAction,
)
from .peer import PeerLink, RelayConfig  # noqa: E402
from .relay import CommandRelay, Result  # noqa: E402

__all__ = [
    "CommandRelay",
    "CommandTimeout",
    "ElementNotFound",
    "ExecutorError",
    "InvalidParams",
    "MalformedMessage",
    "PeerDisconnected",
    "PeerLink",
    "PeerUnavailable",
    "RelayConfig",
    "RelayError",
    "Result",
    "UnknownAction",
    "__version__",
]
