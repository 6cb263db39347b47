"""
Message Schema and encoding for arm commands.

Defines the servo command sent to the robot arm's controller board, the
"no hand" sentinel, the wrapped hand-data record used on the relay control
plane, and the JSON / line-delimited text encodings of each.
"""

import json
import math
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

OUTPUT_FORMATS = ("json", "csv")

# Servo ranges in degrees (inclusive)
JOINT_RANGES: Dict[str, Tuple[int, int]] = {
    "base_rotation": (0, 180),
    "vertical_movement": (0, 180),
    "joint_horizontal": (30, 150),
    "grabber": (0, 180),
}

NO_HAND_TEXT = "No hand detected"

COMPACT_SEPARATORS = (",", ":")


def clamp_angle(value: Any, lo: int, hi: int) -> int:
    """
    Clamp a derived angle into [lo, hi] as an integer.

    Non-finite values never raise: +inf maps to hi, -inf and NaN map to lo.
    """
    try:
        v = float(value)
    except (TypeError, ValueError):
        return lo
    if math.isnan(v):
        return lo
    if math.isinf(v):
        return hi if v > 0 else lo
    return int(max(lo, min(hi, round_half_up(v))))


def round_half_up(v: float) -> int:
    """Round .5 away from the lower integer (0.5 -> 1, -0.5 -> 0)."""
    return int(math.floor(v + 0.5))


@dataclass(frozen=True)
class ActuatorCommand:
    """
    Servo command for the robot arm.

    Every field is clamped into its range in JOINT_RANGES on construction,
    so an ActuatorCommand is always safe to send.

    Attributes:
        base_rotation: Base rotation angle, 0-180
        vertical_movement: Shoulder angle, 0-180
        joint_horizontal: Elbow angle, 30-150
        grabber: Gripper angle, 0 (open) or 180 (closed)
    """
    base_rotation: int
    vertical_movement: int
    joint_horizontal: int
    grabber: int

    def __post_init__(self):
        for name, (lo, hi) in JOINT_RANGES.items():
            object.__setattr__(self, name, clamp_angle(getattr(self, name), lo, hi))

    def to_dict(self) -> Dict[str, int]:
        return {name: getattr(self, name) for name in JOINT_RANGES}

    def to_json(self, indent: Optional[int] = None) -> str:
        """Serialize to a JSON object string (compact unless indent is set)."""
        if indent is not None:
            return json.dumps(self.to_dict(), indent=indent)
        return json.dumps(self.to_dict(), separators=COMPACT_SEPARATORS)

    def to_text(self) -> str:
        """Serialize to the line-delimited ``key,value`` text record."""
        return "\n".join(f"{name},{value}" for name, value in self.to_dict().items())

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'ActuatorCommand':
        return cls(**{name: d[name] for name in JOINT_RANGES})

    @classmethod
    def from_json(cls, data: str) -> 'ActuatorCommand':
        """Deserialize from JSON string."""
        d = json.loads(data)
        if not isinstance(d, dict):
            raise ValueError("command JSON must be an object")
        return cls.from_dict(d)

    @classmethod
    def from_text(cls, data: str) -> 'ActuatorCommand':
        """
        Deserialize from the line-delimited text record.

        Lines whose key is not a servo name (timestamp, gesture, ...) are
        ignored, so the extended export produced by format_hand_data parses too.
        """
        fields = parse_text_record(data)
        missing = [name for name in JOINT_RANGES if name not in fields]
        if missing:
            raise KeyError(f"missing fields: {', '.join(missing)}")
        return cls(**{name: int(fields[name]) for name in JOINT_RANGES})


@dataclass(frozen=True)
class HandNotDetected:
    """Sentinel sent in place of a command when no hand is in view."""
    reason: str = NO_HAND_TEXT

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.reason}

    def to_json(self, indent: Optional[int] = None) -> str:
        if indent is not None:
            return json.dumps(self.to_dict(), indent=indent)
        return json.dumps(self.to_dict(), separators=COMPACT_SEPARATORS)

    def to_text(self) -> str:
        return f"error,{self.reason}"


NO_HAND = HandNotDetected()


@dataclass
class HandData:
    """
    Wrapped hand pose for the relay control plane.

    Attributes:
        hand: Pose dict with palmCenter, wrist, gesture and confidence
        timestamp: Wall clock time in milliseconds
    """
    hand: Dict[str, Any]
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_json(self) -> str:
        return json.dumps(
            {"timestamp": self.timestamp, "hand": self.hand},
            separators=COMPACT_SEPARATORS,
        )


def parse_text_record(data: str) -> Dict[str, str]:
    """Parse ``key,value`` lines into a dict (first comma splits)."""
    fields: Dict[str, str] = {}
    for line in data.splitlines():
        line = line.strip()
        if not line or "," not in line:
            continue
        key, value = line.split(",", 1)
        fields[key.strip()] = value.strip()
    return fields


def encode_payload(payload: Any, output_format: str = "json") -> str:
    """
    Encode a streamed payload for the wire.

    Commands and the no-hand sentinel honour the output format; wrapped hand
    data and dicts are always compact JSON; strings are sent verbatim.

    Raises:
        TypeError: If the payload type has no wire encoding
    """
    if isinstance(payload, str):
        return payload
    if isinstance(payload, (ActuatorCommand, HandNotDetected)):
        if output_format == "csv":
            return payload.to_text()
        return payload.to_json()
    if isinstance(payload, HandData):
        return payload.to_json()
    if isinstance(payload, dict):
        return json.dumps(payload, separators=COMPACT_SEPARATORS)
    raise TypeError(f"Cannot encode payload of type {type(payload).__name__}")


def parse_server_message(data: str) -> Optional[Dict[str, Any]]:
    """
    Parse a reply from the relay gateway.

    Returns the envelope dict, or None when the text is not a typed envelope
    (a board talking the direct protocol may echo anything).
    """
    try:
        d = json.loads(data)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(d, dict) or "type" not in d:
        return None
    return d


def heartbeat_message() -> str:
    """Create a client heartbeat envelope."""
    return json.dumps({"type": "heartbeat"}, separators=COMPACT_SEPARATORS)
