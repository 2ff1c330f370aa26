import threading
from typing import List, Optional

import pytest

from formcoach.agent.feedback import CoachingFeedback
from formcoach.counter.pose_core import Landmark

# A standing figure, facing the camera, in normalized image coordinates
BASE_POSE = {
    0: (0.50, 0.10),
    11: (0.45, 0.25), 12: (0.55, 0.25),
    13: (0.43, 0.38), 14: (0.57, 0.38),
    15: (0.42, 0.50), 16: (0.58, 0.50),
    23: (0.46, 0.50), 24: (0.54, 0.50),
    25: (0.46, 0.70), 26: (0.54, 0.70),
    27: (0.46, 0.90), 28: (0.54, 0.90),
}


def make_frame(hip_y: Optional[float] = None, visibility: float = 0.9, missing=(), **points) -> List[Optional[Landmark]]:
    """33-point frame. hip_y moves both hips; p<idx>=(x, y) overrides a point; missing drops indices."""
    pose = dict(BASE_POSE)
    if hip_y is not None:
        pose[23] = (pose[23][0], hip_y)
        pose[24] = (pose[24][0], hip_y)
    for key, xy in points.items():
        pose[int(key.lstrip("p"))] = xy
    frame: List[Optional[Landmark]] = []
    for idx in range(33):
        if idx in missing:
            frame.append(None)
        elif idx in pose:
            x, y = pose[idx]
            frame.append(Landmark(x=x, y=y, z=0.0, visibility=visibility))
        else:
            frame.append(Landmark(x=0.5, y=0.5, z=0.0, visibility=visibility))
    return frame


def squat_rep_heights(hold: int = 8) -> List[float]:
    """0.3 -> 0.7 over 10 frames, hold, back to 0.3 over 10 frames, hold."""
    down = [round(0.3 + 0.04 * i, 4) for i in range(1, 11)]
    up = [round(0.7 - 0.04 * i, 4) for i in range(1, 11)]
    return down + [0.7] * hold + up + [0.3] * hold


class StubProvider:
    """Feedback provider that never touches the network."""

    def __init__(self, feedback: Optional[CoachingFeedback] = None, gate: Optional[threading.Event] = None, error=None):
        self.feedback = feedback or CoachingFeedback(
            status="excellent", message="Solid depth.", audio_cue="Nice rep", focus_joints=["depth"],
        )
        self.gate = gate
        self.error = error
        self.calls = []
        self.started = threading.Event()

    def analyze(self, angles, exercise):
        self.calls.append((angles, exercise))
        self.started.set()
        if self.gate is not None:
            self.gate.wait(5.0)
        if self.error is not None:
            raise self.error
        return self.feedback


@pytest.fixture
def frame_factory():
    return make_frame


@pytest.fixture
def squat_heights():
    return squat_rep_heights
