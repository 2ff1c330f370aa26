from __future__ import annotations
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import List, Optional


class EventType(str, Enum):
    SESSION_STARTED = "session_started"
    SESSION_PAUSED = "session_paused"
    SESSION_RESUMED = "session_resumed"
    SESSION_STOPPED = "session_stopped"
    POSITION = "position"
    PHASE = "phase"
    REP = "rep"
    FEEDBACK = "feedback"
    TRACE = "trace"


class _Event:
    def to_dict(self) -> dict:
        out = asdict(self)
        out["type"] = self.type.value
        return out


@dataclass
class SessionEvent(_Event):
    type: EventType
    session_id: str
    exercise: str
    stage: str
    ts: float
    count: int = 0


@dataclass
class PositionEvent(_Event):
    session_id: str
    ts: float
    score: int
    ready: bool
    type: EventType = EventType.POSITION


@dataclass
class PhaseEvent(_Event):
    session_id: str
    ts: float
    previous: str
    phase: str
    type: EventType = EventType.PHASE


@dataclass
class RepEvent(_Event):
    session_id: str
    generation: int
    exercise: str
    ts: float
    count: int
    angles: dict = field(default_factory=dict)
    type: EventType = EventType.REP


@dataclass
class FeedbackEvent(_Event):
    session_id: str
    rep_index: int
    status: str
    message: str
    audio_cue: str
    focus_joints: List[str] = field(default_factory=list)
    type: EventType = EventType.FEEDBACK


def trace(msg: str, session_id: Optional[str] = None) -> dict:
    payload = {"type": EventType.TRACE.value, "msg": msg}
    if session_id:
        payload["session_id"] = session_id
    return payload
