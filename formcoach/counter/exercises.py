from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from formcoach.counter.pose_core import (
    Frame, get_landmark, midpoint,
    NOSE, LEFT_SHOULDER, RIGHT_SHOULDER, LEFT_ELBOW, RIGHT_ELBOW,
    LEFT_WRIST, RIGHT_WRIST, LEFT_HIP, RIGHT_HIP,
)


class ExercisePhase(str, Enum):
    STANDING = "standing"
    DESCENDING = "descending"
    ASCENDING = "ascending"
    BOTTOM = "bottom"
    TOP = "top"


# turnaround phases; the only ones a vote can confirm
TURNAROUND_PHASES = (ExercisePhase.BOTTOM, ExercisePhase.TOP)


class ExerciseType(str, Enum):
    SQUAT = "SQUAT"
    DEADLIFT = "DEADLIFT"
    OVERHEAD_PRESS = "OVERHEAD_PRESS"
    BENCH_PRESS = "BENCH_PRESS"
    PUSH_UP = "PUSH_UP"
    PULL_UP = "PULL_UP"
    KNEE_ELEVATION = "KNEE_ELEVATION"
    ROWING = "ROWING"
    CUSTOM = "CUSTOM"


Point = Tuple[float, float]
Selector = Callable[[Frame], Optional[Point]]


def _mid(i: int, j: int) -> Selector:
    return lambda frame: midpoint(frame, i, j)


def _single(i: int) -> Selector:
    def select(frame: Frame) -> Optional[Point]:
        lm = get_landmark(frame, i)
        return None if lm is None else (lm.x, lm.y)
    return select


@dataclass(frozen=True)
class ExerciseProfile:
    """
    How one exercise is tracked: which point, along which axis, and where its
    turnaround positions lie. Coordinates are normalized frame coordinates.

    sign=+1 means an increasing coordinate is the "descending" direction
    (image y grows downward). bottom is reported when sign*(coord - bottom) > 0,
    top when sign*(coord - top) < 0. idle_phase is what a slow but not paused
    movement reports.
    """
    reference: Optional[Selector]
    axis: int = 1
    bottom: Optional[float] = None
    top: Optional[float] = None
    sign: float = 1.0
    idle_phase: ExercisePhase = ExercisePhase.ASCENDING

    def coordinate(self, frame: Frame) -> Optional[float]:
        if self.reference is None:
            return None
        pt = self.reference(frame)
        return None if pt is None else pt[self.axis]


_HIP = ExerciseProfile(_mid(LEFT_HIP, RIGHT_HIP), axis=1, bottom=0.6, top=0.45)
_SHOULDER = ExerciseProfile(_mid(LEFT_SHOULDER, RIGHT_SHOULDER), axis=1, bottom=0.5, top=0.4)

PROFILES: Dict[ExerciseType, ExerciseProfile] = {
    ExerciseType.SQUAT: _HIP,
    ExerciseType.DEADLIFT: _HIP,
    ExerciseType.KNEE_ELEVATION: _HIP,
    ExerciseType.PUSH_UP: _SHOULDER,
    ExerciseType.BENCH_PRESS: _SHOULDER,
    ExerciseType.PULL_UP: ExerciseProfile(_single(NOSE), axis=1, bottom=0.5, top=0.3, idle_phase=ExercisePhase.DESCENDING),
    ExerciseType.OVERHEAD_PRESS: ExerciseProfile(_mid(LEFT_WRIST, RIGHT_WRIST), axis=1, bottom=0.3, top=0.15),
    ExerciseType.ROWING: ExerciseProfile(_mid(LEFT_ELBOW, RIGHT_ELBOW), axis=0, bottom=0.6, top=0.4),
    ExerciseType.CUSTOM: ExerciseProfile(None),
}


def profile_for(exercise: ExerciseType) -> ExerciseProfile:
    return PROFILES.get(ExerciseType(exercise), PROFILES[ExerciseType.CUSTOM])
