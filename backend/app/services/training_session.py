# backend/app/services/training_session.py
"""
Live training session orchestration.

One TrainingSession per call. It accumulates the trainee's speech from
transcript events, asks for throttled scoring checks, applies results that
are still current, and fans the new gate state out to the streak, peak mode
and coaching components. Every change is pushed to the on_update callback
(typically the WebSocket broadcast for the live HUD).

The sales process state machine lives next to the session in its own
registry (app.agents.sales_engine); it is created when the session starts
and removed when it ends.
"""
from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol

from app.agents.gate_progress import GateProgressState, GateProgressTracker, ScoreResult
from app.agents.heat_streak import StreakEngine
from app.agents.peak_mode import SustainedExcellenceDetector, calculate_session_xp
from app.agents.sales_engine import SalesEngine, get_sales_engine, install_sales_engine, remove_sales_engine
from app.agents.script_gates import ScriptMode, get_gate, parse_mode
from app.config import settings
from app.services.check_throttle import CheckThrottle
from app.services.scoring_client import ScoringUnavailableError, ScriptScoringClient
from app.services.voice_hints import CoachTrigger
from app.utils.logger import logger


class Role(Enum):
    TRAINEE = "trainee"
    PERSONA = "persona"


@dataclass
class TranscriptEvent:
    role: Role
    text: str
    timestamp: float


class Scorer(Protocol):
    async def score(self, transcript: str, current_gate: int, mode: ScriptMode) -> ScoreResult:
        ...


class TrainingSession:
    """
    Scoring loop for one live training call.

    Throttle and coach timers are owned here and are cancelled, not merely
    ignored, when the session ends.
    """

    def __init__(
        self,
        session_id: str,
        mode: Any,
        scorer: Scorer,
        on_update: Optional[Callable[[Dict[str, Any]], Awaitable[None]]] = None,
        clock: Callable[[], float] = time.monotonic,
        check_interval: Optional[float] = None,
        stuck_seconds: Optional[float] = None,
        cooldown_seconds: Optional[float] = None,
        hints_enabled: bool = True,
    ):
        self.session_id = session_id
        self.mode = parse_mode(mode)
        self.scorer = scorer
        self.on_update = on_update
        self._clock = clock
        self._check_interval = check_interval
        self._stuck_seconds = stuck_seconds
        self._cooldown_seconds = cooldown_seconds
        self._hints_enabled = hints_enabled

        self.active = False
        self.started_at: Optional[float] = None
        self.transcript: List[TranscriptEvent] = []
        self._trainee_buffer = ""

        self.gate_state = GateProgressState(mode=self.mode)
        self.tracker = GateProgressTracker()
        self.streak = StreakEngine()
        self.peak = SustainedExcellenceDetector()
        self.throttle: Optional[CheckThrottle] = None
        self.coach: Optional[CoachTrigger] = None
        self.stale_responses = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def activate(self, history: Optional[Iterable[TranscriptEvent]] = None) -> None:
        """Start (or restart) the session; the trainee buffer is rebuilt from history."""
        if self.active:
            return

        self.transcript = list(history or [])
        self._trainee_buffer = " ".join(
            e.text.strip() for e in self.transcript if e.role == Role.TRAINEE and e.text.strip()
        )
        self.started_at = self._clock()
        # A response still in flight from before a restart must never look current
        self.throttle = CheckThrottle(
            issue=self._run_check,
            interval=self._check_interval,
            clock=self._clock,
            name=self.session_id,
            start_after=self.throttle.latest_request_id if self.throttle else 0,
        )
        self.coach = CoachTrigger(
            deliver=self._deliver_hint,
            hint_for=self._hint_for,
            stuck_seconds=self._stuck_seconds,
            cooldown_seconds=self._cooldown_seconds,
            clock=self._clock,
            name=self.session_id,
        )
        self.coach.set_enabled(self._hints_enabled)
        self.active = True
        logger.info(f"Training session {self.session_id} active (mode={self.mode.value})")

        self.request_check()

    async def end(self) -> Dict[str, Any]:
        """Stop all timers, summarize, then clear per-session state."""
        if self.throttle:
            self.throttle.close()
        if self.coach:
            self.coach.stop()

        summary = self.summary()
        was_active = self.active
        self.active = False

        self.tracker.reset(self.gate_state)
        self.streak.reset()
        self.peak.reset()
        self.transcript = []
        self._trainee_buffer = ""

        if was_active:
            logger.info(
                f"Training session {self.session_id} ended: gate {summary['gate_reached']}/"
                f"{summary['total_gates']}, best streak {summary['best_streak']}"
            )
            await self._safe_callback({"type": "session_ended", "session_id": self.session_id, "summary": summary})
        return summary

    # ------------------------------------------------------------------
    # Transcript + scoring
    # ------------------------------------------------------------------

    @property
    def trainee_excerpt(self) -> str:
        return self._trainee_buffer[-settings.TRANSCRIPT_EXCERPT_CHARS:]

    def add_transcript_event(self, role: Any, text: str, timestamp: Optional[float] = None) -> bool:
        """Record one transcript event. Returns False when the session is not active."""
        if not self.active:
            return False

        role = role if isinstance(role, Role) else Role((role or "").strip().lower())
        event = TranscriptEvent(role=role, text=text or "", timestamp=timestamp if timestamp is not None else time.time())
        self.transcript.append(event)

        if role == Role.TRAINEE and event.text.strip():
            self._trainee_buffer = f"{self._trainee_buffer} {event.text.strip()}".strip()
            self.request_check()
        return True

    def request_check(self) -> Optional[int]:
        # Empty speech never reaches the throttle
        if not self.active or self.throttle is None or not self.trainee_excerpt.strip():
            return None
        return self.throttle.request()

    async def _run_check(self, request_id: int) -> None:
        excerpt = self.trainee_excerpt
        if not self.active or not excerpt.strip():
            return

        self.gate_state.in_flight_request_id = request_id
        try:
            result = await self.scorer.score(excerpt, self.gate_state.current_gate, self.mode)
        except ScoringUnavailableError as e:
            logger.warning(f"Script check #{request_id} failed for session {self.session_id}: {e}")
            return

        if not self.active or self.throttle is None or not self.throttle.is_current(request_id):
            self.stale_responses += 1
            logger.debug(f"Discarding stale script check #{request_id} for session {self.session_id}")
            return

        snapshot = self.apply_score_result(result)
        await self._safe_callback({"type": "script_progress", **snapshot})

    def apply_score_result(self, result: ScoreResult, now: Optional[float] = None) -> Dict[str, Any]:
        """Apply a current scoring result and update all derived state."""
        now = self._clock() if now is None else now

        advanced = self.tracker.apply_score_result(self.gate_state, result, checked_at=now)
        self.gate_state.in_flight_request_id = None

        similarity = self.gate_state.current_similarity
        self.streak.update(similarity)
        self.peak.update(self.gate_state.adherence_score, now)
        if self.coach:
            self.coach.observe(self.gate_state.current_gate, similarity, now)

        snapshot = self.snapshot()
        snapshot["gate_advanced"] = advanced
        return snapshot

    # ------------------------------------------------------------------
    # Coaching
    # ------------------------------------------------------------------

    def set_hints_enabled(self, enabled: bool) -> None:
        self._hints_enabled = bool(enabled)
        if self.coach:
            self.coach.set_enabled(enabled)

    def _hint_for(self, gate: int) -> Optional[str]:
        return get_gate(self.mode, gate).coaching_hint

    async def _deliver_hint(self, gate: int, message: str) -> None:
        await self._safe_callback({
            "type": "coach_hint",
            "session_id": self.session_id,
            "gate": gate,
            "message": message,
        })

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def _safe_callback(self, data: Dict[str, Any]) -> None:
        """Callback failures must not break the scoring loop."""
        if not self.on_update:
            return
        try:
            await self.on_update(data)
        except Exception as e:
            logger.error(
                f"Callback exception for session {self.session_id}, type={data.get('type', 'unknown')}: {e}"
            )

    def snapshot(self) -> Dict[str, Any]:
        now = self._clock()
        return {
            "session_id": self.session_id,
            "active": self.active,
            "gates": self.gate_state.to_dict(),
            "streak": self.streak.state.to_dict(),
            "peak_mode": self.peak.state.to_dict(),
            "hints": {
                "enabled": self._hints_enabled,
                "sent": self.coach.hints_sent if self.coach else 0,
                **(self.coach.state.to_dict() if self.coach else {}),
            },
            "elapsed_seconds": round(now - self.started_at, 2) if self.started_at is not None else 0.0,
        }

    def summary(self) -> Dict[str, Any]:
        now = self._clock()
        call_seconds = now - self.started_at if self.started_at is not None else 0.0
        peak_seconds = self.peak.total_active_seconds(now)
        return {
            "session_id": self.session_id,
            "mode": self.mode.value,
            "call_seconds": round(call_seconds, 2),
            "gate_reached": self.gate_state.current_gate,
            "total_gates": self.gate_state.total_gates,
            "adherence_score": self.gate_state.adherence_score,
            "best_adherence_score": self.peak.best_score,
            "best_streak": self.streak.best_streak,
            "peak_mode_seconds": round(peak_seconds, 2),
            "hints_sent": self.coach.hints_sent if self.coach else 0,
            "xp": calculate_session_xp(
                call_seconds=call_seconds,
                peak_seconds=peak_seconds,
                peak_score=self.peak.best_score,
            ),
        }


# =============================================================================
# GLOBAL SESSION REGISTRY - Thread-Safe with Memory Management
# =============================================================================

_active_sessions: Dict[str, TrainingSession] = {}
_sessions_lock: Optional[asyncio.Lock] = None
_sessions_sync_lock = threading.Lock()  # For synchronous access
_scoring_client: Optional[ScriptScoringClient] = None


def _get_async_lock() -> asyncio.Lock:
    """Get or create the async lock (lazy initialization)."""
    global _sessions_lock
    if _sessions_lock is None:
        _sessions_lock = asyncio.Lock()
    return _sessions_lock


def get_scoring_client() -> ScriptScoringClient:
    """Shared scoring client for sessions started without an explicit scorer."""
    global _scoring_client
    if _scoring_client is None:
        _scoring_client = ScriptScoringClient()
    return _scoring_client


async def close_scoring_client() -> None:
    global _scoring_client
    client, _scoring_client = _scoring_client, None
    if client is not None:
        await client.aclose()


async def start_training_session(
    session_id: str,
    mode: Any = ScriptMode.ACQUISITION,
    on_update: Optional[Callable[[Dict[str, Any]], Awaitable[None]]] = None,
    scorer: Optional[Scorer] = None,
    history: Optional[Iterable[TranscriptEvent]] = None,
    hints_enabled: bool = True,
    sales_state: Optional[Dict[str, Any]] = None,
) -> TrainingSession:
    """
    Start a session and its sales engine, replacing any previous one with the same id.

    sales_state resumes the sales process from a SalesEngine.snapshot() taken
    before a restart; without it the engine starts in DISCOVERY.
    """
    # Mode and snapshot are validated before anything is torn down
    mode = parse_mode(mode)
    resumed: Optional[SalesEngine] = None
    if sales_state is not None:
        resumed = SalesEngine(session_id)
        resumed.restore(sales_state)

    async with _get_async_lock():
        old = _active_sessions.pop(session_id, None)
        if old:
            try:
                await old.end()
            except Exception as e:
                logger.warning(f"Error ending old session {session_id}: {e}")
            remove_sales_engine(session_id)

        if len(_active_sessions) >= settings.MAX_ACTIVE_SESSIONS:
            raise RuntimeError(f"Too many active training sessions (max {settings.MAX_ACTIVE_SESSIONS})")

        session = TrainingSession(
            session_id=session_id,
            mode=mode,
            scorer=scorer or get_scoring_client(),
            on_update=on_update,
            hints_enabled=hints_enabled,
        )
        with _sessions_sync_lock:
            _active_sessions[session_id] = session

    if resumed is not None:
        install_sales_engine(resumed)
        logger.info(f"[SALES] {session_id}: resumed in {resumed.phase.value}")
    else:
        get_sales_engine(session_id)
    session.activate(history)
    return session


async def end_training_session(session_id: str) -> Optional[Dict[str, Any]]:
    """End a session, cancel its timers and drop its sales engine."""
    async with _get_async_lock():
        with _sessions_sync_lock:
            session = _active_sessions.pop(session_id, None)

    remove_sales_engine(session_id)
    if session is None:
        return None
    return await session.end()


def get_training_session(session_id: str) -> Optional[TrainingSession]:
    with _sessions_sync_lock:
        return _active_sessions.get(session_id)


def get_active_session_count() -> int:
    with _sessions_sync_lock:
        return len(_active_sessions)


async def cleanup_all_sessions() -> int:
    """
    End all sessions. Call on shutdown.
    Returns number of sessions ended.
    """
    async with _get_async_lock():
        with _sessions_sync_lock:
            sessions = list(_active_sessions.values())
            _active_sessions.clear()

    count = 0
    for session in sessions:
        try:
            await session.end()
            remove_sales_engine(session.session_id)
            count += 1
        except Exception as e:
            logger.error(f"Error ending session {session.session_id} during cleanup: {e}")

    return count
