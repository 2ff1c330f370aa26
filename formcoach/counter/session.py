from __future__ import annotations
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from formcoach.agent.feedback import (
    FALLBACK_FEEDBACK, BiomechanicsCoach, CoachingFeedback, FeedbackJob, FeedbackProvider, FeedbackWorker,
)
from formcoach.common.events import (
    EventType, FeedbackEvent, PhaseEvent, PositionEvent, RepEvent, SessionEvent, trace,
)
from formcoach.counter.exercises import ExercisePhase, ExerciseType
from formcoach.counter.pipeline import LandmarkPipeline, PhaseChange, PhaseConfig
from formcoach.counter.pose_core import Frame, JointAngles, position_score

logger = logging.getLogger(__name__)

# Session stages
IDLE = "idle"
POSITIONING = "positioning"
WORKOUT = "workout"


@dataclass
class SessionStatus:
    session_id: str
    exercise: Optional[str]
    stage: str
    paused: bool
    count: int
    phase: str
    position_score: int


@dataclass
class FinalSummary:
    session_id: str
    exercise: Optional[str]
    total_reps: int


class CoachSessionManager:
    """
    Owns the state of one exercise session and its lifecycle.

    Every start/stop bumps `generation`; feedback that comes back for an older
    generation is dropped, so a late model answer never lands in a new session.
    """

    def __init__(
        self,
        cfg: Optional[PhaseConfig] = None,
        provider: Optional[FeedbackProvider] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.cfg = cfg or PhaseConfig()
        self.clock = clock
        self.generation = 0
        self.active_id: Optional[str] = None
        self.exercise: Optional[ExerciseType] = None
        self.stage = IDLE
        self.paused = False
        self.pipeline: Optional[LandmarkPipeline] = None
        self.last_score = 0
        self.last_feedback: Optional[CoachingFeedback] = None
        self._lock = threading.Lock()
        self._event_sink: Optional[Callable[[dict], None]] = None
        # events raised while a frame holds the lock; flushed after release
        self._frame_events: List[dict] = []
        self.feedback = FeedbackWorker(
            provider or BiomechanicsCoach(),
            self._on_feedback,
            is_current=lambda job: job.generation == self.generation,
        )

    def set_event_sink(self, sink: Optional[Callable[[dict], None]]):
        self._event_sink = sink

    def _emit(self, payload: dict):
        if self._event_sink is None:
            return
        try:
            self._event_sink(payload)
        except Exception:
            logger.exception("event sink failed for %s", payload.get("type"))

    def _emit_debug(self, msg: str):
        self._emit(trace(msg, self.active_id))

    def _queue_debug(self, msg: str):
        self._frame_events.append(trace(msg, self.active_id))

    @property
    def count(self) -> int:
        return self.pipeline.count if self.pipeline else 0

    # Lifecycle

    def start(self, exercise: ExerciseType, skip_positioning: bool = False) -> Tuple[str, str]:
        ex = ExerciseType(exercise)
        if self.active_id is not None:
            self.stop()

        with self._lock:
            self.generation += 1
            sid = str(uuid.uuid4())
            self.active_id = sid
            self.exercise = ex
            self.paused = False
            self.last_score = 0
            self.last_feedback = None
            self.pipeline = LandmarkPipeline(
                ex, self.cfg,
                on_rep=self._on_rep,
                on_phase=self._on_phase,
                debug_cb=self._queue_debug,
            )
            self.stage = WORKOUT if skip_positioning else POSITIONING

        logger.info("session %s started: %s (%s)", sid, ex.value, self.stage)
        self._emit(SessionEvent(EventType.SESSION_STARTED, sid, ex.value, self.stage, self.clock()).to_dict())
        return sid, f"started {ex.value.lower()}"

    def calibrate(self) -> bool:
        """Enter the workout stage; only allowed once every key landmark is visible."""
        if self.stage != POSITIONING or self.last_score < 100:
            return False
        with self._lock:
            self.stage = WORKOUT
            self.pipeline.reset()
        self._emit_debug("calibrated: tracking started")
        return True

    def pause(self) -> str:
        if self.active_id is None:
            return ""
        self.paused = True
        self._emit(SessionEvent(EventType.SESSION_PAUSED, self.active_id, self.exercise.value,
                                self.stage, self.clock(), self.count).to_dict())
        return self.active_id

    def resume(self) -> str:
        if self.active_id is None:
            return ""
        self.paused = False
        self._emit(SessionEvent(EventType.SESSION_RESUMED, self.active_id, self.exercise.value,
                                self.stage, self.clock(), self.count).to_dict())
        return self.active_id

    def stop(self) -> FinalSummary:
        with self._lock:
            sid = self.active_id or ""
            ex = self.exercise.value if self.exercise else None
            total = self.count
            self.generation += 1
            if self.pipeline is not None:
                self.pipeline.reset()
            self.pipeline = None
            self.active_id = None
            self.exercise = None
            self.stage = IDLE
            self.paused = False
            self.last_score = 0

        if sid:
            logger.info("session %s stopped: %d reps", sid, total)
            self._emit(SessionEvent(EventType.SESSION_STOPPED, sid, ex or "", IDLE, self.clock(), total).to_dict())
        return FinalSummary(session_id=sid, exercise=ex, total_reps=total)

    def status(self) -> SessionStatus:
        pipe = self.pipeline
        return SessionStatus(
            session_id=self.active_id or "",
            exercise=self.exercise.value if self.exercise else None,
            stage=self.stage,
            paused=self.paused,
            count=pipe.count if pipe else 0,
            phase=(pipe.confirmed_phase if pipe else ExercisePhase.STANDING).value,
            position_score=self.last_score,
        )

    def shutdown(self):
        self.stop()
        self.feedback.shutdown()

    # Frames

    def push_frame(self, frame: Frame, ts: Optional[float] = None) -> Optional[JointAngles]:
        """Feed one landmark frame. Returns the frame's angles while in the workout stage."""
        if self.active_id is None or self.paused:
            return None
        t = float(ts) if ts is not None else self.clock()

        if self.stage == POSITIONING:
            score = position_score(frame, self.cfg.visibility_threshold)
            self.last_score = score
            self._emit(PositionEvent(self.active_id, t, score, score == 100).to_dict())
            return None

        with self._lock:
            if self.pipeline is None:
                return None
            angles = self.pipeline.step(frame, t)
            events, self._frame_events = self._frame_events, []
        # the sink may call back into start/stop, so emit with the lock released
        for payload in events:
            self._emit(payload)
        return angles

    # Pipeline callbacks (frame thread, lock held; events are queued)

    def _on_phase(self, change: PhaseChange):
        self._frame_events.append(
            PhaseEvent(self.active_id, change.ts, change.previous.value, change.current.value).to_dict()
        )

    def _on_rep(self, angles: JointAngles, count: int, ts: float):
        sid = self.active_id
        logger.info("session %s: rep %d", sid, count)
        self._frame_events.append(RepEvent(sid, self.generation, self.exercise.value, ts, count, angles.to_dict()).to_dict())
        self.feedback.submit(FeedbackJob(self.generation, sid, self.exercise, angles, count))

    # Feedback callback (worker thread)

    def _on_feedback(self, job: FeedbackJob, feedback: CoachingFeedback):
        with self._lock:
            if job.generation != self.generation:
                logger.info("dropping stale feedback for rep %d of session %s", job.rep_index, job.session_id)
                return
            self.last_feedback = feedback
        if feedback is FALLBACK_FEEDBACK:
            self._emit(trace(f"feedback unavailable for rep {job.rep_index}, using fallback", job.session_id))
        self._emit(FeedbackEvent(
            session_id=job.session_id,
            rep_index=job.rep_index,
            status=feedback.status,
            message=feedback.message,
            audio_cue=feedback.audio_cue,
            focus_joints=list(feedback.focus_joints),
        ).to_dict())
