"""
Tests for pose extraction, gesture classification and command mapping
======================================================================
"""

import math
from types import SimpleNamespace

import numpy as np
import pytest

from client_arm_control.hand_control import (
    NO_GESTURE,
    Coordinate,
    Gesture,
    GestureName,
    HandPose,
    Orientation,
    as_landmarks,
    build_hand_data,
    classify_gesture,
    compute_arm_command,
    extract_first_hand,
    extract_hand_pose,
    format_hand_data,
    map_to_command,
)
from client_arm_control.message import NO_HAND, ActuatorCommand, JOINT_RANGES


def make_pose(palm):
    return HandPose(
        palm_center=Coordinate(*palm),
        wrist=Coordinate(0.5, 0.8, 0.0),
        index_tip=Coordinate(0.41, 0.5, 0.0),
        thumb_tip=Coordinate(0.40, 0.5, 0.0),
        orientation=Orientation(0.0, 0.0, 0.0),
    )


GRAB = Gesture(GestureName.GRAB, 0.9)
RELEASE = Gesture(GestureName.RELEASE, 0.9)


class TestPoseExtraction:
    """Test suite for extract_hand_pose."""

    @pytest.mark.parametrize("landmarks", [None, [], [(0.5, 0.5, 0.0)] * 5])
    def test_no_hand_gives_no_pose(self, landmarks):
        assert extract_hand_pose(landmarks) is None

    def test_points_are_copied(self, make_landmarks):
        pose = extract_hand_pose(make_landmarks(palm=(0.55, 0.62, -0.03)))

        assert pose.palm_center == Coordinate(0.55, 0.62, -0.03)
        assert pose.wrist == Coordinate(0.5, 0.8, 0.0)
        assert pose.index_tip == Coordinate(0.41, 0.5, 0.0)
        assert pose.thumb_tip == Coordinate(0.40, 0.5, 0.0)

    def test_orientation_hand_pointing_up(self, make_landmarks):
        # palm straight above the wrist, index tip to the right of the thumb tip
        pose = extract_hand_pose(make_landmarks())

        assert pose.orientation.pitch == pytest.approx(-90.0)
        assert pose.orientation.yaw == pytest.approx(0.0)
        assert pose.orientation.roll == pytest.approx(90.0)

    def test_orientation_yaw(self, make_landmarks):
        pose = extract_hand_pose(make_landmarks(
            wrist=(0.5, 0.5, 0.0), palm=(0.6, 0.5, 0.1),
        ))

        assert pose.orientation.pitch == pytest.approx(0.0)
        assert pose.orientation.yaw == pytest.approx(45.0)

    def test_angles_rounded_to_two_decimals(self, make_landmarks):
        pose = extract_hand_pose(make_landmarks(palm=(0.537, 0.611, 0.013)))

        for angle in (pose.orientation.pitch, pose.orientation.roll, pose.orientation.yaw):
            assert angle == round(angle, 2)

    def test_accepts_numpy_array(self, make_landmarks):
        arr = np.array([tuple(p) for p in make_landmarks()])
        assert arr.shape == (21, 3)

        assert extract_hand_pose(arr) == extract_hand_pose(make_landmarks())

    def test_accepts_mediapipe_landmark_list(self, make_landmarks):
        points = [SimpleNamespace(x=p.x, y=p.y, z=p.z) for p in make_landmarks()]
        hand = SimpleNamespace(landmark=points)

        assert extract_hand_pose(hand) == extract_hand_pose(make_landmarks())

    def test_accepts_json_landmark_objects(self, make_landmarks):
        points = [{"x": p.x, "y": p.y, "z": p.z} for p in make_landmarks()]

        assert extract_hand_pose(points) == extract_hand_pose(make_landmarks())
        assert classify_gesture(points) == Gesture(GestureName.GRAB, 0.9)

    def test_json_landmark_without_depth(self):
        pose = extract_hand_pose([{"x": 0.5, "y": 0.5}] * 21)
        assert pose.palm_center == Coordinate(0.5, 0.5, 0.0)

    @pytest.mark.parametrize("point", [{"x": 0.5}, {"y": 0.5, "z": 0.0}, {}, "abc", None])
    def test_incomplete_points_give_no_hand(self, point):
        landmarks = [point] * 21

        assert extract_hand_pose(landmarks) is None
        assert classify_gesture(landmarks) == NO_GESTURE

    def test_pose_to_dict_keys(self, make_landmarks):
        d = extract_hand_pose(make_landmarks()).to_dict()
        assert set(d) == {"palmCenter", "wrist", "indexTip", "thumbTip", "orientation"}
        assert set(d["orientation"]) == {"pitch", "roll", "yaw"}


class TestGestureClassifier:
    """Test suite for classify_gesture."""

    @pytest.mark.parametrize("landmarks", [None, [], [(0.5, 0.5, 0.0)] * 20])
    def test_no_hand(self, landmarks):
        gesture = classify_gesture(landmarks)
        assert gesture.name == GestureName.NONE_DETECTED
        assert gesture.confidence == 0

    def test_pinch_is_grab(self, make_landmarks):
        gesture = classify_gesture(make_landmarks(thumb=(0.40, 0.50, 0), index=(0.41, 0.50, 0)))
        assert gesture == Gesture(GestureName.GRAB, 0.9)

    def test_spread_is_release(self, make_landmarks):
        gesture = classify_gesture(make_landmarks(thumb=(0.30, 0.50, 0), index=(0.50, 0.50, 0)))
        assert gesture == Gesture(GestureName.RELEASE, 0.9)

    def test_dead_zone_is_neutral(self, make_landmarks):
        gesture = classify_gesture(make_landmarks(thumb=(0.30, 0.50, 0), index=(0.42, 0.50, 0)))
        assert gesture == Gesture(GestureName.NEUTRAL, 0.5)

    def test_depth_is_ignored(self, make_landmarks):
        gesture = classify_gesture(make_landmarks(thumb=(0.40, 0.50, -0.5), index=(0.41, 0.50, 0.5)))
        assert gesture.name == GestureName.GRAB

    def test_stateless(self, make_landmarks):
        neutral = make_landmarks(thumb=(0.30, 0.50, 0), index=(0.42, 0.50, 0))
        first = classify_gesture(neutral)

        classify_gesture(make_landmarks(thumb=(0.40, 0.50, 0), index=(0.41, 0.50, 0)))
        classify_gesture(None)
        classify_gesture(make_landmarks(thumb=(0.10, 0.50, 0), index=(0.90, 0.50, 0)))

        assert classify_gesture(neutral) == first


class TestCommandMapper:
    """Test suite for map_to_command."""

    def test_no_pose_gives_sentinel(self):
        assert map_to_command(None, NO_GESTURE) is NO_HAND
        assert map_to_command(None, GRAB) is NO_HAND

    def test_range_edges(self):
        command = map_to_command(make_pose((1.0, 0.0, 0.0)), RELEASE)

        assert command.base_rotation == 180
        assert command.vertical_movement == 180
        assert command.joint_horizontal == 60
        assert command.grabber == 0

    def test_center(self):
        command = map_to_command(make_pose((0.5, 0.5, 0.0)), RELEASE)
        assert command == ActuatorCommand(90, 90, 60, 0)

    def test_depth_mapping(self):
        assert map_to_command(make_pose((0.5, 0.5, 0.5)), RELEASE).joint_horizontal == 90
        assert map_to_command(make_pose((0.5, 0.5, -0.5)), RELEASE).joint_horizontal == 30

    def test_grab_closes_grabber(self):
        assert map_to_command(make_pose((0.5, 0.5, 0.0)), GRAB).grabber == 180

    @pytest.mark.parametrize("gesture", [
        Gesture(GestureName.RELEASE, 0.9),
        Gesture(GestureName.NEUTRAL, 0.5),
        NO_GESTURE,
    ])
    def test_other_gestures_open_grabber(self, gesture):
        assert map_to_command(make_pose((0.5, 0.5, 0.0)), gesture).grabber == 0

    @pytest.mark.parametrize("palm", [
        (-3.0, 5.0, -10.0),
        (7.0, -2.0, 10.0),
        (-0.2, 1.3, 0.9),
        (1e9, -1e9, 1e9),
        (math.nan, math.inf, -math.inf),
    ])
    def test_every_field_in_range(self, palm):
        command = map_to_command(make_pose(palm), GRAB)

        for name, (lo, hi) in JOINT_RANGES.items():
            value = getattr(command, name)
            assert isinstance(value, int)
            assert lo <= value <= hi

    def test_compute_arm_command_example(self, make_landmarks):
        # thumb/index distance ~0.01 -> Grab -> grabber closed
        command = compute_arm_command(make_landmarks(
            palm=(0.5, 0.5, 0.0), thumb=(0.40, 0.50, 0.0), index=(0.41, 0.50, 0.0),
        ))
        assert command == ActuatorCommand(90, 90, 60, 180)

    def test_compute_arm_command_no_hand(self):
        assert compute_arm_command([]) is NO_HAND
        assert compute_arm_command(None) is NO_HAND


class TestFormatting:
    """Test suite for hand data formatting."""

    def test_json_without_hand(self):
        assert format_hand_data(None, None, "json") == '{\n  "error": "No hand detected"\n}'

    def test_csv_without_hand(self):
        assert format_hand_data(None, NO_GESTURE, "csv") == "error,No hand detected"

    def test_json_command(self):
        text = format_hand_data(make_pose((0.5, 0.5, 0.0)), GRAB, "json")
        assert ActuatorCommand.from_json(text) == ActuatorCommand(90, 90, 60, 180)

    def test_csv_export(self):
        text = format_hand_data(make_pose((0.5, 0.5, 0.0)), GRAB, "csv", timestamp=1234)
        lines = text.splitlines()

        assert lines[0] == "timestamp,1234"
        assert "base_rotation,90" in lines
        assert "grabber,180" in lines
        assert lines[-2] == "raw_hand_pos,0.5,0.5,0.0"
        assert lines[-1] == "gesture,Grab,0.9"
        assert ActuatorCommand.from_text(text) == ActuatorCommand(90, 90, 60, 180)

    def test_build_hand_data(self):
        data = build_hand_data(make_pose((0.5, 0.5, 0.0)), GRAB)

        assert data.hand["gesture"] == "Grab"
        assert data.hand["confidence"] == 0.9
        assert data.hand["palmCenter"] == {"x": 0.5, "y": 0.5, "z": 0.0}


class TestMediaPipeAdapter:
    """Test suite for MediaPipe result helpers."""

    def test_first_hand(self):
        first, second = object(), object()
        results = SimpleNamespace(multi_hand_landmarks=[first, second])
        assert extract_first_hand(results) is first

    def test_no_hands(self):
        assert extract_first_hand(SimpleNamespace(multi_hand_landmarks=None)) is None
        assert extract_first_hand(None) is None

    def test_as_landmarks_is_immutable_tuple(self, make_landmarks):
        lm = as_landmarks(make_landmarks())
        assert isinstance(lm, tuple)
        assert len(lm) == 21


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
