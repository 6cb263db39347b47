"""Shared fixtures for the arm control tests."""

import pytest

from client_arm_control.hand_control import (
    INDEX_TIP,
    PALM_CENTER,
    THUMB_TIP,
    WRIST,
    LandmarkPoint,
)


def build_landmarks(
    wrist=(0.5, 0.8, 0.0),
    palm=(0.5, 0.6, 0.0),
    thumb=(0.40, 0.50, 0.0),
    index=(0.41, 0.50, 0.0),
):
    """21 landmarks at the wrist, with the four used points overridden."""
    points = [LandmarkPoint(*wrist) for _ in range(21)]
    points[WRIST] = LandmarkPoint(*wrist)
    points[PALM_CENTER] = LandmarkPoint(*palm)
    points[THUMB_TIP] = LandmarkPoint(*thumb)
    points[INDEX_TIP] = LandmarkPoint(*index)
    return points


@pytest.fixture
def make_landmarks():
    """Factory for a single hand's landmark frame."""
    return build_landmarks
