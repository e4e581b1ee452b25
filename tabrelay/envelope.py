"""Wire envelopes exchanged with the browser executor.

Every frame is a JSON text frame. Commands go out as
``{"id", "action", "params"}``, replies come back as
``{"id", "success", "data" | "error"}``. Frames carrying a ``type`` key
are control frames (ping, pong, ready, install) and never correlate
with a command.
"""

import json
import uuid
from dataclasses import dataclass, field

import typing as tp

from .errors import MalformedMessage

CONTROL_TYPES = ("ping", "pong", "ready", "install")

# Older executors announce themselves with this name
_TYPE_ALIASES = {"extension_ready": "ready"}


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class CommandEnvelope:
    id: str
    action: str
    params: tp.Dict[str, tp.Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"id": self.id, "action": self.action, "params": dict(self.params)}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "CommandEnvelope":
        """Decode a command frame.

        Accepts parameters nested under ``params`` or flattened next to
        ``id``/``action``.
        """
        if not isinstance(data.get("action"), str) or not data["action"]:
            raise MalformedMessage("Command frame without action")
        if "params" in data and isinstance(data["params"], dict):
            params = dict(data["params"])
        else:
            params = {k: v for k, v in data.items() if k not in ("id", "action")}
        return cls(id=str(data.get("id", "")), action=data["action"], params=params)


@dataclass(frozen=True)
class ReplyEnvelope:
    id: str
    success: bool
    data: tp.Any = None
    error: tp.Optional[str] = None

    def to_dict(self) -> dict:
        if self.success:
            return {"id": self.id, "success": True, "data": self.data}
        return {"id": self.id, "success": False, "error": self.error}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, data: dict) -> "ReplyEnvelope":
        reply_id = data.get("id")
        if not isinstance(reply_id, str) or not reply_id:
            raise MalformedMessage("Reply frame without id")
        success = bool(data.get("success"))
        error = None
        if not success:
            error = str(data.get("error") or "Executor command failed")
        return cls(id=reply_id, success=success, data=data.get("data"), error=error)


@dataclass(frozen=True)
class ControlFrame:
    type: str
    version: tp.Optional[str] = None
    payload: tp.Dict[str, tp.Any] = field(default_factory=dict)

    def to_json(self) -> str:
        body = {"type": self.type, **self.payload}
        if self.version is not None:
            body["version"] = self.version
        return json.dumps(body)


PING = ControlFrame("ping")
PONG = ControlFrame("pong")


def _load(text: tp.Union[str, bytes]) -> dict:
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
        raise MalformedMessage(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedMessage(f"Expected JSON object, got {type(data).__name__}")
    return data


def _control(data: dict) -> tp.Optional[ControlFrame]:
    msg_type = data.get("type")
    if msg_type is None:
        return None
    msg_type = _TYPE_ALIASES.get(msg_type, msg_type)
    if msg_type not in CONTROL_TYPES:
        raise MalformedMessage(f"Unknown control frame type: {msg_type!r}")
    version = data.get("version")
    payload = {k: v for k, v in data.items() if k not in ("type", "version")}
    return ControlFrame(
        type=msg_type,
        version=str(version) if version is not None else None,
        payload=payload,
    )


def parse_frame(text: tp.Union[str, bytes]) -> tp.Union[ControlFrame, ReplyEnvelope]:
    """Decode a frame received from the executor.

    Raises MalformedMessage for anything that is neither a known control
    frame nor a reply carrying an id.
    """
    data = _load(text)
    control = _control(data)
    if control is not None:
        return control
    return ReplyEnvelope.from_dict(data)


def parse_command(text: tp.Union[str, bytes]) -> tp.Union[ControlFrame, CommandEnvelope]:
    """Decode a frame received by the executor from the relay."""
    data = _load(text)
    control = _control(data)
    if control is not None:
        return control
    return CommandEnvelope.from_dict(data)
