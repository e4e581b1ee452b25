"""Error taxonomy shared by the relay, the peer link and the gateway."""


class RelayError(Exception):
    """Base class for every failure a caller can see.

    ``code`` is stable and goes out on the wire; ``status`` is the HTTP
    status the gateway answers with.
    """

    code = "relay_error"
    status = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__.strip().splitlines()[0])

    @property
    def message(self) -> str:
        return str(self)


class PeerUnavailable(RelayError):
    """Browser executor is not connected."""

    code = "peer_unavailable"
    status = 503


class PeerDisconnected(RelayError):
    """Browser executor disconnected."""

    code = "peer_disconnected"
    status = 502


class CommandTimeout(RelayError):
    """Command timed out."""

    code = "timeout"
    status = 504


class ExecutorError(RelayError):
    """Executor command failed."""

    code = "executor_error"
    status = 500


class ElementNotFound(ExecutorError):
    """Element not found."""

    code = "element_not_found"

    def __init__(self, locator: str):
        super().__init__(f"Element not found: {locator}")
        self.locator = locator


class MalformedMessage(RelayError):
    """Malformed frame from peer."""

    code = "malformed_message"
    status = 502


class UnknownAction(RelayError):
    """Unknown action."""

    code = "unknown_action"
    status = 400

    def __init__(self, action: str):
        super().__init__(f"Unknown action: {action}")
        self.action = action


class InvalidParams(RelayError):
    """Invalid command parameters."""

    code = "invalid_params"
    status = 400
