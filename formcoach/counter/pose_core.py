from __future__ import annotations
import math
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence, Tuple

# MediaPipe pose indices used by the counter
NOSE = 0
LEFT_SHOULDER, RIGHT_SHOULDER = 11, 12
LEFT_ELBOW, RIGHT_ELBOW = 13, 14
LEFT_WRIST, RIGHT_WRIST = 15, 16
LEFT_HIP, RIGHT_HIP = 23, 24
LEFT_KNEE, RIGHT_KNEE = 25, 26
LEFT_ANKLE, RIGHT_ANKLE = 27, 28

# shoulders, hips, knees, ankles
KEY_LANDMARKS: Tuple[int, ...] = (
    LEFT_SHOULDER, RIGHT_SHOULDER,
    LEFT_HIP, RIGHT_HIP,
    LEFT_KNEE, RIGHT_KNEE,
    LEFT_ANKLE, RIGHT_ANKLE,
)


@dataclass(frozen=True)
class Landmark:
    x: float
    y: float
    z: float = 0.0
    visibility: Optional[float] = None


Frame = Sequence[Optional[Landmark]]


@dataclass(frozen=True)
class JointAngles:
    """Joint angles in degrees. back_angle is trunk lean from vertical and is not clamped."""
    left_knee: float = 0.0
    right_knee: float = 0.0
    left_hip: float = 0.0
    right_hip: float = 0.0
    left_elbow: float = 0.0
    right_elbow: float = 0.0
    back_angle: float = 0.0

    def to_dict(self) -> dict:
        return {
            "leftKnee": self.left_knee,
            "rightKnee": self.right_knee,
            "leftHip": self.left_hip,
            "rightHip": self.right_hip,
            "leftElbow": self.left_elbow,
            "rightElbow": self.right_elbow,
            "backAngle": self.back_angle,
        }


# (proximal, vertex, distal)
ANGLE_TRIPLES = {
    "left_knee": (LEFT_HIP, LEFT_KNEE, LEFT_ANKLE),
    "right_knee": (RIGHT_HIP, RIGHT_KNEE, RIGHT_ANKLE),
    "left_hip": (LEFT_SHOULDER, LEFT_HIP, LEFT_KNEE),
    "right_hip": (RIGHT_SHOULDER, RIGHT_HIP, RIGHT_KNEE),
    "left_elbow": (LEFT_SHOULDER, LEFT_ELBOW, LEFT_WRIST),
    "right_elbow": (RIGHT_SHOULDER, RIGHT_ELBOW, RIGHT_WRIST),
}


# Utility math

def angle_3pt(a: Tuple[float, float], b: Tuple[float, float], c: Tuple[float, float]) -> float:
    """Return angle ABC in degrees with B as vertex."""
    try:
        ang = math.degrees(
            math.atan2(c[1] - b[1], c[0] - b[0]) - math.atan2(a[1] - b[1], a[0] - b[0])
        )
        ang = abs(ang)
        if ang > 180:
            ang = 360 - ang
        if math.isnan(ang):
            return 0.0
        return ang
    except (TypeError, IndexError, ValueError):
        return 0.0


def get_landmark(frame: Frame, idx: int) -> Optional[Landmark]:
    if frame is None or idx < 0 or idx >= len(frame):
        return None
    return frame[idx]


def midpoint(frame: Frame, i: int, j: int) -> Optional[Tuple[float, float]]:
    a, b = get_landmark(frame, i), get_landmark(frame, j)
    if a is None or b is None:
        return None
    return (a.x + b.x) / 2.0, (a.y + b.y) / 2.0


def _joint_angle(frame: Frame, triple: Tuple[int, int, int]) -> float:
    pts = [get_landmark(frame, i) for i in triple]
    if any(p is None for p in pts):
        return 0.0
    a, b, c = ((p.x, p.y) for p in pts)
    return float(round(angle_3pt(a, b, c)))


def back_angle(frame: Frame) -> float:
    """Trunk lean: hip-midpoint to shoulder-midpoint vector against vertical, 90° baseline removed."""
    shoulders = midpoint(frame, LEFT_SHOULDER, RIGHT_SHOULDER)
    hips = midpoint(frame, LEFT_HIP, RIGHT_HIP)
    if shoulders is None or hips is None:
        return 0.0
    ang = abs(math.degrees(math.atan2(shoulders[1] - hips[1], shoulders[0] - hips[0]))) - 90.0
    return float(round(ang))


def get_joint_angles(frame: Frame) -> JointAngles:
    """Map one landmark frame to JointAngles; any angle missing a landmark is 0."""
    values = {name: _joint_angle(frame, triple) for name, triple in ANGLE_TRIPLES.items()}
    return JointAngles(back_angle=back_angle(frame), **values)


def position_score(frame: Frame, threshold: float = 0.6, key_landmarks: Iterable[int] = KEY_LANDMARKS) -> int:
    """0-100 share of key landmarks whose visibility exceeds threshold."""
    keys = tuple(key_landmarks)
    if not keys:
        return 0
    visible = 0
    for idx in keys:
        lm = get_landmark(frame, idx)
        if lm is not None and (lm.visibility or 0.0) > threshold:
            visible += 1
    # half-up, not round-half-to-even
    return int(visible * 100 / len(keys) + 0.5)


# Frame parsing

def _coerce(value: Any) -> Optional[float]:
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def landmark_from_any(item: Any) -> Optional[Landmark]:
    """Accept a mapping or an object with x/y/z/visibility attributes; None when malformed."""
    if item is None:
        return None
    if isinstance(item, dict):
        get = item.get
    else:
        get = lambda k: getattr(item, k, None)  # noqa: E731
    x, y = _coerce(get("x")), _coerce(get("y"))
    if x is None or y is None:
        return None
    z = _coerce(get("z"))
    vis = get("visibility")
    return Landmark(x=x, y=y, z=z if z is not None else 0.0,
                    visibility=_coerce(vis) if vis is not None else None)


def landmarks_from_payload(items: Optional[Iterable[Any]]) -> Tuple[Optional[Landmark], ...]:
    """Convert a browser payload (or a MediaPipe landmark list) into a frame. Never raises."""
    if items is None:
        return ()
    try:
        return tuple(landmark_from_any(it) for it in items)
    except TypeError:
        return ()
