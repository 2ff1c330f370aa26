import math
import random
from types import SimpleNamespace

import pytest

from formcoach.counter.pose_core import (
    JointAngles, Landmark, angle_3pt, back_angle, get_joint_angles,
    landmarks_from_payload, position_score,
)


def test_angle_3pt_right_angle():
    assert angle_3pt((1, 0), (0, 0), (0, 1)) == pytest.approx(90.0)


def test_angle_3pt_straight_line_is_180():
    assert angle_3pt((0, 0), (1, 0), (2, 0)) == pytest.approx(180.0)


def test_angle_3pt_folds_reflex_angle():
    a = (math.cos(math.radians(170)), math.sin(math.radians(170)))
    c = (math.cos(math.radians(-170)), math.sin(math.radians(-170)))
    assert angle_3pt(a, (0, 0), c) == pytest.approx(20.0)


def test_angle_3pt_always_in_range():
    rng = random.Random(7)
    for _ in range(500):
        a, b, c = [(rng.uniform(-1, 2), rng.uniform(-1, 2)) for _ in range(3)]
        assert 0.0 <= angle_3pt(a, b, c) <= 180.0


def test_angle_3pt_bad_input_is_zero():
    assert angle_3pt(None, (0, 0), (1, 1)) == 0.0
    assert angle_3pt((float("nan"), 0), (0, 0), (1, 1)) == 0.0


def test_standing_pose_angles(frame_factory):
    angles = get_joint_angles(frame_factory())
    assert angles.left_knee == 180
    assert angles.right_knee == 180
    assert angles.back_angle == 0
    for value in (angles.left_hip, angles.right_hip, angles.left_elbow, angles.right_elbow):
        assert 0 <= value <= 180


def test_missing_landmark_zeroes_only_that_angle(frame_factory):
    angles = get_joint_angles(frame_factory(missing=(25,)))
    assert angles.left_knee == 0
    assert angles.left_hip == 0
    assert angles.right_knee == 180


def test_empty_or_short_frame_does_not_raise():
    assert get_joint_angles([]) == JointAngles()
    assert get_joint_angles([Landmark(0.5, 0.5)] * 5) == JointAngles()


def test_back_angle_forward_lean_is_signed(frame_factory):
    frame = frame_factory(p11=(0.70, 0.25), p12=(0.80, 0.25))
    # shoulders 0.25 right of and 0.25 above the hips: 45 degrees off vertical
    assert back_angle(frame) == -45


def test_position_score_all_visible(frame_factory):
    assert position_score(frame_factory()) == 100


def test_position_score_partial(frame_factory):
    frame = frame_factory()
    frame[27] = Landmark(0.46, 0.9, visibility=0.2)
    frame[28] = Landmark(0.54, 0.9, visibility=0.6)  # threshold is exclusive
    assert position_score(frame) == 75


def test_position_score_missing_visibility_counts_as_invisible(frame_factory):
    frame = frame_factory()
    frame[11] = Landmark(0.45, 0.25)
    assert position_score(frame) == 88
    assert position_score(frame, threshold=0.95) == 0


def test_position_score_rounds_half_up(frame_factory):
    frame = frame_factory(visibility=0.2)
    frame[11] = Landmark(0.45, 0.25, visibility=0.9)
    assert position_score(frame) == 13  # 12.5
    for idx in (12, 23, 24, 25):
        frame[idx] = Landmark(0.5, 0.5, visibility=0.9)
    assert position_score(frame) == 63  # 62.5


def test_landmarks_from_payload_handles_malformed_entries():
    frame = landmarks_from_payload([
        {"x": 0.1, "y": 0.2, "z": -0.1, "visibility": 0.9},
        None,
        {"x": "abc", "y": 0.2},
        {"x": float("nan"), "y": 0.2},
        {"y": 0.3},
        SimpleNamespace(x=0.4, y=0.5, z=0.0, visibility=0.8),
        {"x": 1, "y": 1},
    ])
    assert frame[0] == Landmark(0.1, 0.2, -0.1, 0.9)
    assert frame[1:5] == (None, None, None, None)
    assert frame[5] == Landmark(0.4, 0.5, 0.0, 0.8)
    assert frame[6] == Landmark(1.0, 1.0, 0.0, None)


def test_landmarks_from_payload_non_iterable():
    assert landmarks_from_payload(None) == ()
    assert landmarks_from_payload(42) == ()
