from __future__ import annotations
import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Literal, Optional, Protocol

from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from formcoach.counter.exercises import ExerciseType
from formcoach.counter.pose_core import JointAngles

logger = logging.getLogger(__name__)

FOCUS_TAGS = ["back", "knees", "hips", "depth", "elbows", "wrists", "core", "rom"]


class CoachingFeedback(BaseModel):
    status: Literal["excellent", "warning", "critical"] = Field(..., description="Overall form verdict")
    message: str = Field(..., description="One or two sentences on the main technical flaw")
    audio_cue: str = Field(..., description="Short spoken cue, under ten words")
    focus_joints: List[str] = Field(default_factory=list, description=f"Tags from {FOCUS_TAGS}")


FALLBACK_FEEDBACK = CoachingFeedback(
    status="warning",
    message="Analysis unavailable. Stay tight!",
    audio_cue="Eyes forward, stay strong.",
    focus_joints=[],
)

SYSTEM = (
    "You are an elite biomechanics coach. You receive joint angles (degrees) captured "
    "at the end of one repetition. Identify technical flaws and answer concisely. "
    f"Use focus_joints tags only from: {FOCUS_TAGS}."
)


class FeedbackProvider(Protocol):
    def analyze(self, angles: JointAngles, exercise: ExerciseType) -> CoachingFeedback: ...


def exercise_context(angles: JointAngles, exercise: ExerciseType) -> str:
    ex = ExerciseType(exercise)
    if ex == ExerciseType.SQUAT:
        return (f"SQUAT: Knee L:{angles.left_knee:g}°, R:{angles.right_knee:g}°. "
                f"Hip L:{angles.left_hip:g}°. Back:{angles.back_angle:g}°.")
    if ex == ExerciseType.DEADLIFT:
        return f"DEADLIFT: Hip:{angles.left_hip:g}°, Knee:{angles.left_knee:g}°, Back:{angles.back_angle:g}°."
    if ex == ExerciseType.OVERHEAD_PRESS:
        return f"OHP: Back Arch:{angles.back_angle:g}°, Elbows:{angles.left_elbow:g}°."
    return f"Exercise: {ex.value}. Back: {angles.back_angle:g}°."


class BiomechanicsCoach:
    """Asks the chat model for per-rep form feedback. Never raises; falls back on any failure."""

    def __init__(self, llm_factory: Optional[Callable[[], object]] = None):
        self._llm_factory = llm_factory
        self._chain = None

    def _get_chain(self):
        if self._chain is None:
            factory = self._llm_factory
            if factory is None:
                from formcoach.agent.llm import get_llm  # lazy: needs OPENAI_API_KEY
                factory = get_llm
            self._chain = factory().with_structured_output(CoachingFeedback)
        return self._chain

    def analyze(self, angles: JointAngles, exercise: ExerciseType) -> CoachingFeedback:
        messages = [
            SystemMessage(content=SYSTEM),
            HumanMessage(content=f"Analysis context: {exercise_context(angles, exercise)}"),
        ]
        try:
            res = self._get_chain().invoke(messages)
        except Exception as e:
            logger.warning("feedback call failed: %r", e)
            return FALLBACK_FEEDBACK
        if isinstance(res, CoachingFeedback):
            return res
        try:
            return CoachingFeedback.model_validate(res)
        except Exception as e:
            logger.warning("feedback response unusable: %r", e)
            return FALLBACK_FEEDBACK


@dataclass
class FeedbackJob:
    generation: int
    session_id: str
    exercise: ExerciseType
    angles: JointAngles
    rep_index: int


ResultCallback = Callable[[FeedbackJob, CoachingFeedback], None]


class FeedbackWorker:
    """
    Background thread draining rep jobs so the frame loop never waits on the model.
    Results are handed to on_result from the worker thread. Jobs for which
    is_current returns False are dropped without reaching the provider.
    """

    def __init__(
        self,
        provider: FeedbackProvider,
        on_result: ResultCallback,
        is_current: Optional[Callable[[FeedbackJob], bool]] = None,
    ):
        self.provider = provider
        self.on_result = on_result
        self.is_current = is_current or (lambda job: True)
        self.q: "queue.Queue[Optional[FeedbackJob]]" = queue.Queue()
        self._stop = threading.Event()
        self.worker = threading.Thread(target=self._run, name="feedback-worker", daemon=True)
        self.worker.start()

    def submit(self, job: FeedbackJob) -> None:
        if self._stop.is_set():
            return
        self.q.put(job)

    def _run(self):
        while not self._stop.is_set():
            try:
                job = self.q.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                if job is None:
                    continue
                if not self.is_current(job):
                    logger.info("skipping stale rep %d of session %s", job.rep_index, job.session_id)
                    continue
                try:
                    feedback = self.provider.analyze(job.angles, job.exercise)
                except Exception as e:
                    logger.warning("feedback provider error on rep %d: %r", job.rep_index, e)
                    feedback = FALLBACK_FEEDBACK
                try:
                    self.on_result(job, feedback)
                except Exception:
                    logger.exception("feedback result handler failed")
            finally:
                self.q.task_done()

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until queued jobs are processed. True when drained, False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self.q.all_tasks_done:
            while self.q.unfinished_tasks:
                if deadline is None:
                    self.q.all_tasks_done.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self.q.all_tasks_done.wait(remaining)
        return True

    def shutdown(self):
        self._stop.set()
        try:
            self.q.put_nowait(None)
        except queue.Full:
            pass
