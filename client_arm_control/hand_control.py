"""
Hand Control Logic - Landmarks to robot arm commands.

This module derives a hand pose and a grab gesture from the 21 MediaPipe
hand landmarks of one hand and maps them to bounded servo angles.

Every function here is pure and total: a missing hand is an ordinary
outcome (no pose, "None Detected" gesture, NO_HAND sentinel), never an error.
"""

import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np

from .message import (
    NO_HAND,
    ActuatorCommand,
    HandData,
    HandNotDetected,
    JOINT_RANGES,
    clamp_angle,
)

# ============================================================================
# MediaPipe Landmark Indices
# ============================================================================

WRIST = 0
THUMB_CMC, THUMB_MCP, THUMB_IP, THUMB_TIP = 1, 2, 3, 4
INDEX_MCP, INDEX_PIP, INDEX_DIP, INDEX_TIP = 5, 6, 7, 8
MIDDLE_MCP, MIDDLE_PIP, MIDDLE_DIP, MIDDLE_TIP = 9, 10, 11, 12
RING_MCP, RING_PIP, RING_DIP, RING_TIP = 13, 14, 15, 16
PINKY_MCP, PINKY_PIP, PINKY_DIP, PINKY_TIP = 17, 18, 19, 20

# Middle finger MCP stands in for the palm center
PALM_CENTER = MIDDLE_MCP

NUM_LANDMARKS = 21

# Thumb-index pinch thresholds in normalized image units
GRAB_DISTANCE = 0.10
RELEASE_DISTANCE = 0.15
DECISIVE_CONFIDENCE = 0.9
NEUTRAL_CONFIDENCE = 0.5


# ============================================================================
# Types
# ============================================================================

class LandmarkPoint(NamedTuple):
    """One normalized landmark (x, y in [0, 1], z small and signed)."""
    x: float
    y: float
    z: float


@dataclass(frozen=True)
class Coordinate:
    x: float
    y: float
    z: float

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "z": self.z}


@dataclass(frozen=True)
class Orientation:
    """Approximate hand orientation in degrees."""
    pitch: float
    roll: float
    yaw: float

    def to_dict(self) -> Dict[str, float]:
        return {"pitch": self.pitch, "roll": self.roll, "yaw": self.yaw}


@dataclass(frozen=True)
class HandPose:
    """Pose snapshot derived from a single landmark frame."""
    palm_center: Coordinate
    wrist: Coordinate
    index_tip: Coordinate
    thumb_tip: Coordinate
    orientation: Orientation

    def to_dict(self) -> Dict[str, Dict[str, float]]:
        return {
            "palmCenter": self.palm_center.to_dict(),
            "wrist": self.wrist.to_dict(),
            "indexTip": self.index_tip.to_dict(),
            "thumbTip": self.thumb_tip.to_dict(),
            "orientation": self.orientation.to_dict(),
        }


class GestureName(str, Enum):
    GRAB = "Grab"
    RELEASE = "Release"
    NEUTRAL = "Neutral"
    NONE_DETECTED = "None Detected"


@dataclass(frozen=True)
class Gesture:
    name: GestureName
    confidence: float


NO_GESTURE = Gesture(GestureName.NONE_DETECTED, 0.0)

Landmarks = Optional[Union[Sequence[Any], np.ndarray]]


# ============================================================================
# Vector/Geometry Helpers
# ============================================================================

def _point(p: Any) -> LandmarkPoint:
    """Normalize a landmark object, {x, y, z} mapping, 3-sequence or array row."""
    if isinstance(p, Mapping):
        return LandmarkPoint(float(p["x"]), float(p["y"]), float(p.get("z", 0.0)))
    if hasattr(p, "x") and hasattr(p, "y"):
        return LandmarkPoint(float(p.x), float(p.y), float(getattr(p, "z", 0.0)))
    return LandmarkPoint(float(p[0]), float(p[1]), float(p[2]))


def as_landmarks(landmarks: Landmarks) -> Optional[Tuple[LandmarkPoint, ...]]:
    """
    Freeze one frame of landmarks into a tuple of LandmarkPoint.

    Accepts MediaPipe NormalizedLandmarkList (``.landmark``), sequences of
    landmark objects, ``{"x", "y", "z"}`` mappings (landmarks decoded from
    JSON) or triples, and (N, 3) arrays. Returns None when the frame has fewer
    than 21 points or a point lacks a coordinate.
    """
    if landmarks is None:
        return None
    if hasattr(landmarks, "landmark"):
        landmarks = landmarks.landmark
    if len(landmarks) < NUM_LANDMARKS:
        return None
    try:
        return tuple(_point(p) for p in landmarks[:NUM_LANDMARKS])
    except (KeyError, IndexError, TypeError, ValueError):
        return None


def _v(lm: Sequence[LandmarkPoint], i: int) -> np.ndarray:
    """Get 3D vector from landmark."""
    p = lm[i]
    return np.array([p.x, p.y, p.z], dtype=np.float64)


def _coord(lm: Sequence[LandmarkPoint], i: int) -> Coordinate:
    p = lm[i]
    return Coordinate(p.x, p.y, p.z)


def _deg(rad: float) -> float:
    return round(math.degrees(rad), 2)


def pinch_distance(lm: Sequence[LandmarkPoint]) -> float:
    """Planar (x, y) distance between thumb tip and index tip."""
    return float(np.linalg.norm(_v(lm, THUMB_TIP)[:2] - _v(lm, INDEX_TIP)[:2]))


# ============================================================================
# Pose Extraction
# ============================================================================

def extract_hand_pose(landmarks: Landmarks) -> Optional[HandPose]:
    """
    Derive palm, wrist, fingertip positions and orientation.

    Orientation is a cheap approximation rather than a rotation-matrix
    derivation: pitch and yaw come from the wrist -> palm vector, roll from
    the thumb tip -> index tip vector in the image plane. Good enough to
    display and to drive coarse servo angles.

    Args:
        landmarks: 21 landmarks of one hand, or None / empty for no hand

    Returns:
        HandPose, or None when no hand is present
    """
    lm = as_landmarks(landmarks)
    if lm is None:
        return None

    dx, dy, dz = _v(lm, PALM_CENTER) - _v(lm, WRIST)
    index_tip = lm[INDEX_TIP]
    thumb_tip = lm[THUMB_TIP]

    pitch = math.atan2(dy, math.sqrt(dx * dx + dz * dz))
    yaw = math.atan2(dx, dz)
    roll = math.atan2(index_tip.x - thumb_tip.x, index_tip.y - thumb_tip.y)

    return HandPose(
        palm_center=_coord(lm, PALM_CENTER),
        wrist=_coord(lm, WRIST),
        index_tip=_coord(lm, INDEX_TIP),
        thumb_tip=_coord(lm, THUMB_TIP),
        orientation=Orientation(pitch=_deg(pitch), roll=_deg(roll), yaw=_deg(yaw)),
    )


# ============================================================================
# Gesture Classification
# ============================================================================

def classify_gesture(landmarks: Landmarks) -> Gesture:
    """
    Classify the grab gesture from thumb-index pinch distance.

    Stateless: each frame is classified from its own distance, so values
    between the two thresholds always read Neutral.
    """
    lm = as_landmarks(landmarks)
    if lm is None:
        return NO_GESTURE

    distance = pinch_distance(lm)
    if distance < GRAB_DISTANCE:
        return Gesture(GestureName.GRAB, DECISIVE_CONFIDENCE)
    if distance > RELEASE_DISTANCE:
        return Gesture(GestureName.RELEASE, DECISIVE_CONFIDENCE)
    return Gesture(GestureName.NEUTRAL, NEUTRAL_CONFIDENCE)


# ============================================================================
# Command Mapping
# ============================================================================

def joint_horizontal_angle(z: float) -> float:
    """Map palm depth to the elbow angle before clamping."""
    z_normalized = (z + 0.5) * 0.5
    return 30 + z_normalized * 120


def map_to_command(
    pose: Optional[HandPose],
    gesture: Gesture,
) -> Union[ActuatorCommand, HandNotDetected]:
    """
    Map a hand pose and gesture to servo angles.

    A plain affine transform per axis, clamped to each servo's range, so it
    tolerates noisy or off-screen coordinates.

    Returns:
        ActuatorCommand, or NO_HAND when there is no pose
    """
    if pose is None:
        return NO_HAND

    palm = pose.palm_center
    return ActuatorCommand(
        base_rotation=_angle(palm.x * 180, "base_rotation"),
        vertical_movement=_angle((1 - palm.y) * 180, "vertical_movement"),
        joint_horizontal=_angle(joint_horizontal_angle(palm.z), "joint_horizontal"),
        grabber=180 if gesture.name == GestureName.GRAB else 0,
    )


def _angle(value: float, joint: str) -> int:
    lo, hi = JOINT_RANGES[joint]
    return clamp_angle(value, lo, hi)


def compute_arm_command(landmarks: Landmarks) -> Union[ActuatorCommand, HandNotDetected]:
    """Run pose extraction, gesture classification and mapping on one frame."""
    lm = as_landmarks(landmarks)
    return map_to_command(extract_hand_pose(lm), classify_gesture(lm))


def build_hand_data(pose: HandPose, gesture: Gesture) -> HandData:
    """Wrap a pose for the relay control plane."""
    return HandData(hand={
        "palmCenter": pose.palm_center.to_dict(),
        "wrist": pose.wrist.to_dict(),
        "gesture": gesture.name.value,
        "confidence": gesture.confidence,
    })


def format_hand_data(
    pose: Optional[HandPose],
    gesture: Optional[Gesture],
    output_format: str = "json",
    timestamp: Optional[int] = None,
) -> str:
    """
    Format pose and gesture for display or export.

    JSON output is the indented command; CSV output is the command's text
    record extended with timestamp, raw palm position and gesture lines.
    """
    if pose is None or gesture is None:
        if output_format == "json":
            return NO_HAND.to_json(indent=2)
        return NO_HAND.to_text()

    command = map_to_command(pose, gesture)
    if output_format == "json":
        return command.to_json(indent=2)

    if timestamp is None:
        timestamp = int(time.time() * 1000)
    palm = pose.palm_center
    return "\n".join([
        f"timestamp,{timestamp}",
        command.to_text(),
        f"raw_hand_pos,{palm.x},{palm.y},{palm.z}",
        f"gesture,{gesture.name.value},{gesture.confidence}",
    ])


# ============================================================================
# Hand Detection Helper
# ============================================================================

def extract_first_hand(results) -> Optional[Any]:
    """
    Extract the first detected hand from MediaPipe results.

    Args:
        results: MediaPipe hands processing results

    Returns:
        NormalizedLandmarkList of the first hand, or None
    """
    if results is None or not getattr(results, "multi_hand_landmarks", None):
        return None
    return results.multi_hand_landmarks[0]
