"""
Relay control-plane protocol.

Inbound messages are decoded once, at the boundary, into one of the tagged
variants below; the server dispatches on the variant type and never inspects
payload shape again.

Envelope replies: {"type": "connection" | "handData" | "heartbeat" | "error", ...}
"""

import json
import math
import time
from dataclasses import dataclass
from typing import Any, Dict, Tuple, Union

# Servo ranges accepted from clients (inclusive)
COMMAND_FIELDS: Dict[str, Tuple[int, int]] = {
    "base_rotation": (0, 180),
    "vertical_movement": (0, 180),
    "joint_horizontal": (30, 150),
    "grabber": (0, 180),
}

INVALID_FORMAT = "Invalid message format"


class MessageFormatError(ValueError):
    """Inbound message could not be decoded."""


@dataclass(frozen=True)
class HeartbeatMessage:
    pass


@dataclass(frozen=True)
class HandDataMessage:
    """Wrapped pose: {"timestamp": ..., "hand": {...}}."""
    hand: Dict[str, Any]


@dataclass(frozen=True)
class CommandMessage:
    """Servo command, JSON object or ``key,value`` text, clamped to range."""
    base_rotation: int
    vertical_movement: int
    joint_horizontal: int
    grabber: int

    def to_dict(self) -> Dict[str, int]:
        return {name: getattr(self, name) for name in COMMAND_FIELDS}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


@dataclass(frozen=True)
class NoHandMessage:
    """The client's "no hand detected" sentinel."""
    reason: str


@dataclass(frozen=True)
class OtherMessage:
    """Any other well-formed JSON value; counts for liveness only."""
    data: Any


InboundMessage = Union[HeartbeatMessage, HandDataMessage, CommandMessage, NoHandMessage, OtherMessage]


def _clamp_field(name: str, value: Any) -> int:
    lo, hi = COMMAND_FIELDS[name]
    try:
        v = float(value)
    except (TypeError, ValueError):
        raise MessageFormatError(f"{name} is not a number: {value!r}")
    if math.isnan(v):
        raise MessageFormatError(f"{name} is NaN")
    if math.isinf(v):
        return hi if v > 0 else lo
    return int(max(lo, min(hi, math.floor(v + 0.5))))


def _command(fields: Dict[str, Any]) -> CommandMessage:
    return CommandMessage(**{name: _clamp_field(name, fields[name]) for name in COMMAND_FIELDS})


def _from_object(d: Dict[str, Any]) -> InboundMessage:
    if d.get("type") == "heartbeat":
        return HeartbeatMessage()
    if isinstance(d.get("hand"), dict):
        return HandDataMessage(hand=d["hand"])
    if all(name in d for name in COMMAND_FIELDS):
        return _command(d)
    if set(d) == {"error"}:
        return NoHandMessage(reason=str(d["error"]))
    return OtherMessage(data=d)


def _from_text(data: str) -> InboundMessage:
    fields: Dict[str, str] = {}
    for line in data.splitlines():
        if "," not in line:
            continue
        key, value = line.split(",", 1)
        fields[key.strip()] = value.strip()

    if all(name in fields for name in COMMAND_FIELDS):
        return _command(fields)
    if "error" in fields:
        return NoHandMessage(reason=fields["error"])
    raise MessageFormatError("unrecognized text message")


def parse_message(data: str) -> InboundMessage:
    """
    Decode one inbound message.

    Raises:
        MessageFormatError: If the message is neither valid JSON nor a
            recognized ``key,value`` text record
    """
    try:
        d = json.loads(data)
    except (json.JSONDecodeError, TypeError):
        return _from_text(data)

    if not isinstance(d, dict):
        return OtherMessage(data=d)
    return _from_object(d)


def now_ms() -> int:
    return int(time.time() * 1000)


def connection_reply(client_id: str) -> Dict[str, Any]:
    return {"type": "connection", "status": "connected", "clientId": client_id}


def ack_reply() -> Dict[str, Any]:
    return {"type": "handData", "status": "received", "timestamp": now_ms()}


def heartbeat_reply() -> Dict[str, Any]:
    return {"type": "heartbeat", "timestamp": now_ms()}


def error_reply(message: str = INVALID_FORMAT) -> Dict[str, Any]:
    return {"type": "error", "message": message}
