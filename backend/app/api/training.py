# backend/app/api/training.py
"""
API endpoints for live training sessions and the sales process gate.
"""

import uuid
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from app.agents.sales_engine import SalesEngine, SalesTransitionError, peek_sales_engine
from app.agents.script_gates import UnknownScriptModeError
from app.api.websocket import broadcast_session_update
from app.services.training_session import (
    Role,
    TrainingSession,
    TranscriptEvent,
    end_training_session,
    get_training_session,
    start_training_session,
)
from app.utils.logger import logger

router = APIRouter(prefix="/api/training", tags=["training"])


class TranscriptLine(BaseModel):
    role: Literal["trainee", "persona"]
    text: str = ""
    timestamp: Optional[float] = None


class StartSessionRequest(BaseModel):
    session_id: Optional[str] = None
    mode: str = "acquisition"
    hints_enabled: bool = True
    history: List[TranscriptLine] = Field(default_factory=list)
    # Snapshot from a previous GET /sessions/{id} ("sales") to resume the sales process
    sales_state: Optional[Dict[str, Any]] = None


class HintsRequest(BaseModel):
    enabled: bool


class PillarRequest(BaseModel):
    pillar: str
    satisfied: bool = True


def _require_session(session_id: str) -> TrainingSession:
    session = get_training_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Training session {session_id} not found")
    return session


def _require_engine(session_id: str) -> SalesEngine:
    engine = peek_sales_engine(session_id)
    if engine is None:
        raise HTTPException(status_code=404, detail=f"Training session {session_id} not found")
    return engine


def _refused(e: SalesTransitionError) -> HTTPException:
    logger.info(f"[SALES] refused: {e}")
    return HTTPException(
        status_code=409,
        detail={"reason": e.reason.value, "phase": e.phase.value, "event": e.event.value},
    )


async def _publish_sales(engine: SalesEngine) -> Dict[str, Any]:
    snapshot = engine.snapshot()
    await broadcast_session_update({"type": "sales_phase", **snapshot})
    return snapshot


# ===== SESSION LIFECYCLE =====

@router.post("/sessions")
async def create_session(request: StartSessionRequest):
    """Start a training call (replaces an existing session with the same id)."""
    session_id = request.session_id or uuid.uuid4().hex
    history = [
        TranscriptEvent(role=Role(line.role), text=line.text, timestamp=line.timestamp or 0.0)
        for line in request.history
    ]

    try:
        session = await start_training_session(
            session_id,
            mode=request.mode,
            on_update=broadcast_session_update,
            history=history,
            hints_enabled=request.hints_enabled,
            sales_state=request.sales_state,
        )
    except UnknownScriptModeError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"Invalid sales_state: {e}")
    except RuntimeError as e:
        logger.error(f"Failed to start training session: {e}")
        raise HTTPException(status_code=503, detail=str(e))

    return {"success": True, "session": session.snapshot()}


@router.get("/sessions/{session_id}")
async def get_session(session_id: str):
    session = _require_session(session_id)
    engine = peek_sales_engine(session_id)
    return {
        "session": session.snapshot(),
        "sales": engine.snapshot() if engine else None,
    }


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str):
    """End the call: timers cancelled, summary returned."""
    summary = await end_training_session(session_id)
    if summary is None:
        raise HTTPException(status_code=404, detail=f"Training session {session_id} not found")
    return {"success": True, "summary": summary}


@router.post("/sessions/{session_id}/transcript")
async def add_transcript(session_id: str, line: TranscriptLine):
    session = _require_session(session_id)
    accepted = session.add_transcript_event(line.role, line.text, line.timestamp)
    return {"accepted": accepted}


@router.post("/sessions/{session_id}/hints")
async def set_hints(session_id: str, request: HintsRequest):
    session = _require_session(session_id)
    session.set_hints_enabled(request.enabled)
    return {"hints_enabled": request.enabled}


@router.get("/sessions/{session_id}/summary")
async def get_summary(session_id: str):
    session = _require_session(session_id)
    engine = peek_sales_engine(session_id)
    return {
        "summary": session.summary(),
        "sales": engine.snapshot() if engine else None,
    }


# ===== SALES PROCESS =====

@router.post("/sessions/{session_id}/pillars")
async def update_pillar(session_id: str, request: PillarRequest):
    engine = _require_engine(session_id)
    try:
        engine.update_pillar(request.pillar, request.satisfied)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return await _publish_sales(engine)


@router.get("/sessions/{session_id}/offer-gate")
async def get_offer_gate(session_id: str):
    """What the persona-response layer asks before saying a number."""
    engine = _require_engine(session_id)
    allowed = engine.can_reveal_offer()
    missing = engine.get_missing_pillar()
    return {
        "can_reveal_offer": allowed,
        "phase": engine.phase.value,
        "missing_pillar": missing.value if missing else None,
        "deflect_response": None if allowed else engine.get_deflect_response(),
    }


@router.post("/sessions/{session_id}/underwriting/start")
async def start_underwriting(session_id: str):
    engine = _require_engine(session_id)
    try:
        message = engine.start_underwriting()
    except SalesTransitionError as e:
        raise _refused(e)
    return {"message": message, **(await _publish_sales(engine))}


@router.post("/sessions/{session_id}/underwriting/complete")
async def complete_underwriting(session_id: str):
    engine = _require_engine(session_id)
    try:
        engine.complete_underwriting()
    except SalesTransitionError as e:
        raise _refused(e)
    return await _publish_sales(engine)


@router.post("/sessions/{session_id}/offer/reveal")
async def reveal_offer(session_id: str):
    engine = _require_engine(session_id)
    try:
        engine.reveal_offer()
    except SalesTransitionError as e:
        raise _refused(e)
    return await _publish_sales(engine)


@router.post("/sessions/{session_id}/price/agree")
async def agree_to_price(session_id: str):
    engine = _require_engine(session_id)
    try:
        engine.agree_to_price()
    except SalesTransitionError as e:
        raise _refused(e)
    return await _publish_sales(engine)


@router.post("/sessions/{session_id}/closing/complete")
async def complete_closing(session_id: str):
    engine = _require_engine(session_id)
    try:
        engine.complete_closing()
    except SalesTransitionError as e:
        raise _refused(e)
    return await _publish_sales(engine)
