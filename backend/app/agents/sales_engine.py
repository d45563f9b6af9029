# backend/app/agents/sales_engine.py
"""
Sales Process State Machine

Enforces the strict sales order for the seller persona:
DISCOVERY -> UNDERWRITING_SYNC -> OFFER_STAGE -> CLOSING_WALKTHROUGH -> COMPLETED

The persona may only disclose a price once discovery established all four
pillars (motivation, timeline, condition, price anchor) AND underwriting has
been completed. can_reveal_offer() is the single gate the persona-response
layer consults before saying a number.

Pillar verification is part of DISCOVERY: setting the last missing pillar is
the only automatic transition. Every other transition needs an explicit call,
and an out-of-order call raises SalesTransitionError with a TransitionRefusal
so callers can branch on why it was refused.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from app.utils.logger import logger


class SalesPhase(Enum):
    """Forward-only sales process phases"""
    DISCOVERY = "DISCOVERY"
    UNDERWRITING_SYNC = "UNDERWRITING_SYNC"
    OFFER_STAGE = "OFFER_STAGE"
    CLOSING_WALKTHROUGH = "CLOSING_WALKTHROUGH"
    COMPLETED = "COMPLETED"


class Pillar(Enum):
    """Discovery facts required before pricing, in deflect priority order"""
    MOTIVATION = "motivation"      # Hidden Why identified
    TIMELINE = "timeline"          # Seller's timeline understood
    CONDITION = "condition"        # Property condition assessed
    PRICE_ANCHOR = "price_anchor"  # Seller's price expectation known


class SalesEvent(Enum):
    PILLARS_COMPLETE = "pillars_complete"
    START_UNDERWRITING = "start_underwriting"
    COMPLETE_UNDERWRITING = "complete_underwriting"
    REVEAL_OFFER = "reveal_offer"
    AGREE_TO_PRICE = "agree_to_price"
    COMPLETE_CLOSING = "complete_closing"


class TransitionRefusal(Enum):
    """Why a sales transition was refused"""
    DISCOVERY_INCOMPLETE = "discovery_incomplete"
    UNDERWRITING_NOT_READY = "underwriting_not_ready"
    OFFER_NOT_ALLOWED = "offer_not_allowed"
    OFFER_NOT_REVEALED = "offer_not_revealed"
    PROCESS_COMPLETED = "process_completed"


class SalesTransitionError(Exception):
    """Raised when a sales transition is invoked out of order."""

    def __init__(self, reason: TransitionRefusal, phase: SalesPhase, event: SalesEvent):
        self.reason = reason
        self.phase = phase
        self.event = event
        super().__init__(f"{event.value} refused in {phase.value}: {reason.value}")


_PHASE_ORDER = list(SalesPhase)

# (phase, event) -> next phase, or the reason the event is refused there.
# Pairs that are not listed fall back to DEFAULT_REFUSALS.
SALES_TRANSITIONS: Dict[Tuple[SalesPhase, SalesEvent], Union[SalesPhase, TransitionRefusal]] = {
    (SalesPhase.DISCOVERY, SalesEvent.PILLARS_COMPLETE): SalesPhase.UNDERWRITING_SYNC,

    (SalesPhase.DISCOVERY, SalesEvent.START_UNDERWRITING): TransitionRefusal.DISCOVERY_INCOMPLETE,
    (SalesPhase.UNDERWRITING_SYNC, SalesEvent.START_UNDERWRITING): SalesPhase.UNDERWRITING_SYNC,

    (SalesPhase.UNDERWRITING_SYNC, SalesEvent.COMPLETE_UNDERWRITING): SalesPhase.OFFER_STAGE,

    (SalesPhase.OFFER_STAGE, SalesEvent.REVEAL_OFFER): SalesPhase.OFFER_STAGE,

    (SalesPhase.OFFER_STAGE, SalesEvent.AGREE_TO_PRICE): SalesPhase.CLOSING_WALKTHROUGH,
    (SalesPhase.CLOSING_WALKTHROUGH, SalesEvent.AGREE_TO_PRICE): SalesPhase.CLOSING_WALKTHROUGH,
    (SalesPhase.COMPLETED, SalesEvent.AGREE_TO_PRICE): TransitionRefusal.PROCESS_COMPLETED,

    **{(phase, SalesEvent.COMPLETE_CLOSING): SalesPhase.COMPLETED for phase in SalesPhase},
}

DEFAULT_REFUSALS: Dict[SalesEvent, TransitionRefusal] = {
    SalesEvent.PILLARS_COMPLETE: TransitionRefusal.DISCOVERY_INCOMPLETE,
    SalesEvent.START_UNDERWRITING: TransitionRefusal.UNDERWRITING_NOT_READY,
    SalesEvent.COMPLETE_UNDERWRITING: TransitionRefusal.UNDERWRITING_NOT_READY,
    SalesEvent.REVEAL_OFFER: TransitionRefusal.OFFER_NOT_ALLOWED,
    SalesEvent.AGREE_TO_PRICE: TransitionRefusal.OFFER_NOT_REVEALED,
}

PILLAR_NAMES: Dict[Pillar, str] = {
    Pillar.MOTIVATION: "property's story and your motivation",
    Pillar.TIMELINE: "timeline you're working with",
    Pillar.CONDITION: "property's condition",
    Pillar.PRICE_ANCHOR: "price range you're thinking",
}

UNDERWRITING_SYNC_MESSAGE = (
    "I have everything I need. I'm going to run this by my underwriting team real quick "
    "to see how close we can get to your goals. Hang on one sec..."
)

# Aliases accepted from the conversation-understanding layer
_PILLAR_ALIASES = {"priceanchor": Pillar.PRICE_ANCHOR, "price-anchor": Pillar.PRICE_ANCHOR}


def parse_pillar(value: Union[str, Pillar]) -> Pillar:
    if isinstance(value, Pillar):
        return value
    key = (value or "").strip()
    alias = _PILLAR_ALIASES.get(key.lower())
    if alias:
        return alias
    try:
        return Pillar(key.lower())
    except ValueError:
        raise ValueError(f"Unknown pillar: {value!r}")


class SalesEngine:
    """
    Per-session sales process state machine.
    """

    def __init__(self, session_id: str = ""):
        self.session_id = session_id
        self.created_at = datetime.utcnow()  # For garbage collection
        self.phase = SalesPhase.DISCOVERY
        self.pillars: Dict[Pillar, bool] = {p: False for p in Pillar}
        self.discovery_complete = False
        self.underwriting_complete = False
        self.offer_revealed = False
        self.price_agreed = False

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def are_pillars_complete(self) -> bool:
        return all(self.pillars.values())

    def can_reveal_offer(self) -> bool:
        return (
            self.discovery_complete
            and self.are_pillars_complete()
            and self.underwriting_complete
            and self.phase == SalesPhase.OFFER_STAGE
        )

    def get_missing_pillar(self) -> Optional[Pillar]:
        for pillar in Pillar:
            if not self.pillars[pillar]:
                return pillar
        return None

    def get_pillar_name(self, pillar: Union[str, Pillar]) -> str:
        return PILLAR_NAMES[parse_pillar(pillar)]

    def get_deflect_response(self) -> str:
        """What the persona says when pushed for a number too early."""
        missing = self.get_missing_pillar()
        if missing is None:
            return (
                "I'd love to give you a number right now, but I'd be doing you a disservice. "
                "My partners need me to run this through our underwriting system first so we can "
                "give you the best possible 'As-Is' price. Can you hang on one sec while I do that?"
            )
        return (
            "[chuckle] I'd love to give you a number right now, but I'd be doing you a disservice. "
            "My partners need me to understand the property's story first so we can give you the "
            "best possible 'As-Is' price. "
            f"Can we talk about the {self.get_pillar_name(missing)} for a second?"
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def update_pillar(self, pillar: Union[str, Pillar], satisfied: bool) -> None:
        pillar = parse_pillar(pillar)
        self.pillars[pillar] = bool(satisfied)
        logger.debug(f"[SALES] {self.session_id}: pillar {pillar.value}={bool(satisfied)}")

        if self.are_pillars_complete() and self.phase == SalesPhase.DISCOVERY:
            self.phase = self._resolve(SalesEvent.PILLARS_COMPLETE)
            self.discovery_complete = True
            logger.info(f"[SALES] {self.session_id}: all pillars complete - moving to UNDERWRITING_SYNC")

    def start_underwriting(self) -> str:
        """Confirm the underwriting hold; returns the line the persona speaks."""
        self.phase = self._resolve(SalesEvent.START_UNDERWRITING)
        logger.info(f"[SALES] {self.session_id}: underwriting sync started")
        return UNDERWRITING_SYNC_MESSAGE

    def complete_underwriting(self) -> None:
        next_phase = self._resolve(SalesEvent.COMPLETE_UNDERWRITING)
        self.underwriting_complete = True
        self.phase = next_phase
        logger.info(f"[SALES] {self.session_id}: underwriting complete - ready for OFFER_STAGE")

    def reveal_offer(self) -> None:
        if not self.can_reveal_offer():
            self._refuse(TransitionRefusal.OFFER_NOT_ALLOWED, SalesEvent.REVEAL_OFFER)
        self.phase = self._resolve(SalesEvent.REVEAL_OFFER)
        self.offer_revealed = True
        logger.info(f"[SALES] {self.session_id}: offer revealed")

    def agree_to_price(self) -> None:
        if not self.offer_revealed:
            self._refuse(TransitionRefusal.OFFER_NOT_REVEALED, SalesEvent.AGREE_TO_PRICE)
        next_phase = self._resolve(SalesEvent.AGREE_TO_PRICE)
        self.price_agreed = True
        self.phase = next_phase
        logger.info(f"[SALES] {self.session_id}: price agreed - moving to CLOSING_WALKTHROUGH")

    def complete_closing(self) -> None:
        self.phase = self._resolve(SalesEvent.COMPLETE_CLOSING)
        logger.info(f"[SALES] {self.session_id}: closing walkthrough complete")

    def _resolve(self, event: SalesEvent) -> SalesPhase:
        outcome = SALES_TRANSITIONS.get((self.phase, event), DEFAULT_REFUSALS.get(event))
        if isinstance(outcome, SalesPhase):
            return outcome
        self._refuse(outcome, event)

    def _refuse(self, reason: TransitionRefusal, event: SalesEvent) -> None:
        logger.warning(f"[SALES] {self.session_id}: {event.value} refused in {self.phase.value} ({reason.value})")
        raise SalesTransitionError(reason, self.phase, event)

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        missing = self.get_missing_pillar()
        return {
            "session_id": self.session_id,
            "phase": self.phase.value,
            "pillars": {p.value: v for p, v in self.pillars.items()},
            "discovery_complete": self.discovery_complete,
            "underwriting_complete": self.underwriting_complete,
            "offer_revealed": self.offer_revealed,
            "price_agreed": self.price_agreed,
            "missing_pillar": missing.value if missing else None,
            "can_reveal_offer": self.can_reveal_offer(),
            "phase_index": phase_index(self.phase),
        }

    def restore(self, data: Dict[str, Any]) -> None:
        """
        Load a snapshot produced by snapshot().

        Raises ValueError for an unknown phase or pillar; the engine is left
        untouched in that case.
        """
        phase = SalesPhase(data.get("phase"))
        pillars = {parse_pillar(k): bool(v) for k, v in (data.get("pillars") or {}).items()}

        self.phase = phase
        self.pillars = {p: pillars.get(p, False) for p in Pillar}
        self.discovery_complete = bool(data.get("discovery_complete", False))
        self.underwriting_complete = bool(data.get("underwriting_complete", False))
        self.offer_revealed = bool(data.get("offer_revealed", False))
        self.price_agreed = bool(data.get("price_agreed", False))


def phase_index(phase: SalesPhase) -> int:
    return _PHASE_ORDER.index(phase)


# =============================================================================
# GLOBAL ENGINE STORAGE - Thread-Safe with Memory Management
# =============================================================================

_sales_engines: Dict[str, SalesEngine] = {}
_engine_lock = threading.Lock()

# Memory limits
MAX_SALES_ENGINES = 1000
ENGINE_MAX_AGE_HOURS = 2


def _make_room() -> None:
    """Evict stale engines when the registry is full (called within lock)."""
    if len(_sales_engines) >= MAX_SALES_ENGINES:
        removed = _cleanup_stale_engines()
        if removed:
            logger.warning(f"[SALES] evicted {removed} stale sales engines")


def get_sales_engine(session_id: str) -> SalesEngine:
    """Get or create the sales engine for a session."""
    with _engine_lock:
        if session_id not in _sales_engines:
            _make_room()
            _sales_engines[session_id] = SalesEngine(session_id)
        return _sales_engines[session_id]


def install_sales_engine(engine: SalesEngine) -> SalesEngine:
    """Register a prepared engine (e.g. one restored from a snapshot), replacing any existing one."""
    with _engine_lock:
        if engine.session_id not in _sales_engines:
            _make_room()
        _sales_engines[engine.session_id] = engine
    return engine


def peek_sales_engine(session_id: str) -> Optional[SalesEngine]:
    with _engine_lock:
        return _sales_engines.get(session_id)


def remove_sales_engine(session_id: str) -> None:
    with _engine_lock:
        _sales_engines.pop(session_id, None)


def can_trigger_offer(session_id: str) -> bool:
    """No engine means the call is not ready for an offer."""
    engine = peek_sales_engine(session_id)
    if engine is None:
        return False
    return engine.can_reveal_offer()


def get_sales_engine_count() -> int:
    with _engine_lock:
        return len(_sales_engines)


def _cleanup_stale_engines() -> int:
    """Remove engines older than ENGINE_MAX_AGE_HOURS (called within lock)."""
    now = datetime.utcnow()
    max_age = timedelta(hours=ENGINE_MAX_AGE_HOURS)

    stale_ids = [
        sid for sid, engine in _sales_engines.items()
        if (now - engine.created_at) > max_age
    ]
    for sid in stale_ids:
        del _sales_engines[sid]
    return len(stale_ids)


def cleanup_all_sales_engines() -> int:
    """Force cleanup of all engines. Call on shutdown."""
    with _engine_lock:
        count = len(_sales_engines)
        _sales_engines.clear()
        return count
