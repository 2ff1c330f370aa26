from __future__ import annotations
import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, List, Optional, Set

from fastapi import FastAPI, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from formcoach.counter.exercises import ExerciseType
from formcoach.counter.pipeline import PhaseConfig
from formcoach.counter.pose_core import landmarks_from_payload
from formcoach.counter.session import CoachSessionManager

logger = logging.getLogger(__name__)

WS_CLIENTS: Set[WebSocket] = set()
_LOOP: Optional[asyncio.AbstractEventLoop] = None


class FrameMessage(BaseModel):
    type: str
    landmarks: List[Optional[Any]] = Field(default_factory=list)
    ts: Optional[float] = None


@asynccontextmanager
async def lifespan(_: FastAPI):
    global _LOOP
    _LOOP = asyncio.get_running_loop()
    yield
    _LOOP = None


app = FastAPI(lifespan=lifespan)

MANAGER = CoachSessionManager(cfg=PhaseConfig.from_env())


def ACTIVE_MANAGER() -> CoachSessionManager:
    return MANAGER


async def broadcast(obj: dict):
    dead = []
    for ws in list(WS_CLIENTS):
        try:
            await ws.send_text(json.dumps(obj))
        except Exception:
            dead.append(ws)
    for d in dead:
        WS_CLIENTS.discard(d)


# let the manager push events to all WS clients; feedback arrives on a worker thread
def _sink(ev: dict):
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None
    if loop is not None:
        loop.create_task(broadcast(ev))
    elif _LOOP is not None and _LOOP.is_running():
        asyncio.run_coroutine_threadsafe(broadcast(ev), _LOOP)


MANAGER.set_event_sink(_sink)


@app.get("/sessions/current")
async def current():
    st = ACTIVE_MANAGER().status()
    out = asdict(st)
    fb = ACTIVE_MANAGER().last_feedback
    out["last_feedback"] = fb.model_dump() if fb else None
    return JSONResponse(out)


@app.post("/coach/start")
async def start(exercise: ExerciseType, skip_positioning: bool = Query(False)):
    sid, status = ACTIVE_MANAGER().start(exercise=exercise, skip_positioning=skip_positioning)
    return {"session_id": sid, "status": status, "stage": ACTIVE_MANAGER().stage}


@app.post("/coach/calibrate")
async def calibrate():
    m = ACTIVE_MANAGER()
    ok = m.calibrate()
    return {"calibrated": ok, "stage": m.stage, "position_score": m.last_score}


@app.post("/coach/pause")
async def pause():
    return {"session_id": ACTIVE_MANAGER().pause(), "paused": True}


@app.post("/coach/resume")
async def resume():
    return {"session_id": ACTIVE_MANAGER().resume(), "paused": False}


@app.post("/coach/stop")
async def stop():
    final = ACTIVE_MANAGER().stop()
    return JSONResponse({"stopped": True, **asdict(final)})


@app.websocket("/ws/landmarks")
async def ws_landmarks(ws: WebSocket):
    await ws.accept()
    WS_CLIENTS.add(ws)
    logger.info("ws: client connected (%d)", len(WS_CLIENTS))
    try:
        while True:
            raw = await ws.receive_text()
            try:
                msg = FrameMessage.model_validate_json(raw)
            except ValidationError:
                logger.debug("ws: skipping malformed message")
                continue
            if msg.type != "landmarks":
                continue
            frame = landmarks_from_payload(msg.landmarks)
            ts = msg.ts if msg.ts is not None else time.time()
            ACTIVE_MANAGER().push_frame(frame, ts)
    except WebSocketDisconnect:
        pass
    finally:
        WS_CLIENTS.discard(ws)
        logger.info("ws: client closed (%d)", len(WS_CLIENTS))


def main():
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host="127.0.0.1", port=8000)


if __name__ == "__main__":
    main()
