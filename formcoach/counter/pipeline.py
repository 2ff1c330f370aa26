from __future__ import annotations
import logging
import os
import time
from collections import Counter, deque
from dataclasses import dataclass, fields
from typing import Callable, Deque, List, Optional

from dotenv import load_dotenv

from formcoach.counter.exercises import (
    ExercisePhase, ExerciseType, TURNAROUND_PHASES, profile_for,
)
from formcoach.counter.pose_core import Frame, JointAngles, get_joint_angles

logger = logging.getLogger(__name__)


@dataclass
class PhaseConfig:
    # Motion history / velocity
    history_size: int = 30
    velocity_window: int = 5
    still_eps: float = 0.001      # |v| below this = paused
    move_eps: float = 0.002       # |v| above this = clearly moving
    # Phase vote
    vote_size: int = 6
    vote_window: int = 5
    vote_min_samples: int = 4
    vote_quorum: int = 3
    # Rep gating
    min_rep_interval_ms: int = 800
    # Positioning gate
    visibility_threshold: float = 0.6

    @classmethod
    def from_env(cls, prefix: str = "FORMCOACH_") -> "PhaseConfig":
        """Defaults overridden by FORMCOACH_<FIELD> variables (a .env file is honoured)."""
        load_dotenv()
        cfg = cls()
        for f in fields(cls):
            raw = os.getenv(prefix + f.name.upper())
            if raw is None:
                continue
            cast = int if isinstance(getattr(cfg, f.name), int) else float
            try:
                setattr(cfg, f.name, cast(raw))
            except ValueError:
                logger.warning("ignoring %s%s=%r (not a number)", prefix, f.name.upper(), raw)
        return cfg


class MotionHistory:
    """Fixed-capacity FIFO of the reference coordinate, one sample per frame."""

    def __init__(self, capacity: int = 30):
        self._buf: Deque[float] = deque(maxlen=capacity)

    def append(self, value: float) -> None:
        self._buf.append(float(value))

    def last(self, n: int) -> List[float]:
        if n <= 0:
            return []
        return list(self._buf)[-n:]

    def clear(self) -> None:
        self._buf.clear()

    @property
    def capacity(self) -> int:
        return self._buf.maxlen or 0

    def __len__(self) -> int:
        return len(self._buf)

    def __iter__(self):
        return iter(self._buf)


def detect_exercise_phase(
    frame: Frame,
    history: MotionHistory,
    exercise: ExerciseType,
    cfg: Optional[PhaseConfig] = None,
) -> ExercisePhase:
    """
    Raw per-frame phase from the reference point's recent velocity and position.

    history must already hold the current frame's sample. Noisy by nature;
    PhaseRepCounter does the smoothing.
    """
    cfg = cfg or PhaseConfig()
    if len(history) < cfg.velocity_window:
        return ExercisePhase.STANDING

    profile = profile_for(exercise)
    coord = profile.coordinate(frame)
    if coord is None:
        return ExercisePhase.STANDING

    window = history.last(cfg.velocity_window)
    velocity = (window[-1] - window[0]) / len(window)

    if abs(velocity) < cfg.still_eps:
        if profile.bottom is not None and profile.sign * (coord - profile.bottom) > 0:
            return ExercisePhase.BOTTOM
        if profile.top is not None and profile.sign * (coord - profile.top) < 0:
            return ExercisePhase.TOP

    signed = velocity * profile.sign
    if signed > cfg.move_eps:
        return ExercisePhase.DESCENDING
    if signed < -cfg.move_eps:
        return ExercisePhase.ASCENDING
    return profile.idle_phase


@dataclass
class PhaseChange:
    previous: ExercisePhase
    current: ExercisePhase
    ts: float = 0.0
    rep_counted: bool = False


class PhaseRepCounter:
    """
    Debounces raw phases into a confirmed phase and counts reps.

    Only bottom/top can be confirmed, and only when they hold a quorum of the
    last vote_window raw phases. A rep is the bottom -> top edge, at least
    min_rep_interval_ms after the previous one.
    """

    def __init__(self, cfg: Optional[PhaseConfig] = None, debug_cb: Optional[Callable[[str], None]] = None):
        self.cfg = cfg or PhaseConfig()
        self._dbg = debug_cb or (lambda *_: None)
        self.votes: Deque[ExercisePhase] = deque(maxlen=self.cfg.vote_size)
        self.count = 0
        self.confirmed_phase = ExercisePhase.STANDING
        self.last_rep_ts = 0.0

    def reset(self) -> None:
        self.votes.clear()
        self.count = 0
        self.confirmed_phase = ExercisePhase.STANDING
        self.last_rep_ts = 0.0

    def stable_phase(self) -> Optional[ExercisePhase]:
        if len(self.votes) < self.cfg.vote_min_samples:
            return None
        tally = Counter(list(self.votes)[-self.cfg.vote_window:])
        for phase in TURNAROUND_PHASES:
            if tally[phase] >= self.cfg.vote_quorum:
                return phase
        return None

    def step(self, raw: ExercisePhase, ts: float) -> Optional[PhaseChange]:
        self.votes.append(raw)
        stable = self.stable_phase()
        if stable is None or stable == self.confirmed_phase:
            return None

        previous = self.confirmed_phase
        elapsed_ms = (ts - self.last_rep_ts) * 1000.0
        completes = previous == ExercisePhase.BOTTOM and stable == ExercisePhase.TOP
        self.confirmed_phase = stable
        if completes and elapsed_ms >= self.cfg.min_rep_interval_ms:
            self.count += 1
            self.last_rep_ts = ts
            self._dbg(f"rep++ ({self.count})")
            return PhaseChange(previous, stable, ts, rep_counted=True)
        if completes:
            self._dbg(f"rep rejected: {elapsed_ms:.0f}ms since last")
        self._dbg(f"phase→{stable.value}")
        return PhaseChange(previous, stable, ts)


RepCallback = Callable[[JointAngles, int, float], None]
PhaseCallback = Callable[[PhaseChange], None]


class LandmarkPipeline:
    """
    Per-session frame processor: landmarks -> angles, raw phase, confirmed phase, reps.
    No camera, no threads. Just call step(frame, ts).
    """

    def __init__(
        self,
        exercise: ExerciseType,
        cfg: Optional[PhaseConfig] = None,
        on_rep: Optional[RepCallback] = None,
        on_phase: Optional[PhaseCallback] = None,
        debug_cb: Optional[Callable[[str], None]] = None,
    ):
        self.exercise = ExerciseType(exercise)
        self.cfg = cfg or PhaseConfig()
        self.profile = profile_for(self.exercise)
        self.on_rep = on_rep
        self.on_phase = on_phase
        self.history = MotionHistory(self.cfg.history_size)
        self.counter = PhaseRepCounter(self.cfg, debug_cb=debug_cb)
        self.last_angles = JointAngles()
        self.last_raw_phase = ExercisePhase.STANDING

    @property
    def count(self) -> int:
        return self.counter.count

    @property
    def confirmed_phase(self) -> ExercisePhase:
        return self.counter.confirmed_phase

    def reset(self) -> None:
        self.history.clear()
        self.counter.reset()
        self.last_angles = JointAngles()
        self.last_raw_phase = ExercisePhase.STANDING

    def step(self, frame: Frame, ts: Optional[float] = None) -> JointAngles:
        """Feed one landmark frame at timestamp ts (sec)."""
        t = float(ts) if ts is not None else time.time()
        angles = get_joint_angles(frame)
        self.last_angles = angles

        coord = self.profile.coordinate(frame)
        if coord is None:
            raw = ExercisePhase.STANDING
        else:
            self.history.append(coord)
            raw = detect_exercise_phase(frame, self.history, self.exercise, self.cfg)
        self.last_raw_phase = raw

        change = self.counter.step(raw, t)
        if change is None:
            return angles
        logger.debug("%s: %s -> %s", self.exercise.value, change.previous.value, change.current.value)
        if self.on_phase:
            self.on_phase(change)
        if change.rep_counted and self.on_rep:
            self.on_rep(angles, self.counter.count, t)
        return angles
