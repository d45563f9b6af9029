# backend/app/agents/gate_progress.py
"""
Gate progress tracking for live script adherence.

Owns the per-session gate pointer, the per-gate similarity map and the
aggregate adherence score. The only writer is apply_score_result(), fed by
scoring responses that already passed the stale-response check.

Advancement rules (either may fire on the same result):
- similarity of the current gate strictly above the on-script threshold
  moves the pointer forward by exactly one gate
- a recommended gate strictly ahead of the pointer is a trusted override and
  the pointer jumps straight to it (may skip gates)

The pointer never moves backwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from app.agents.script_gates import ScriptMode, gates_for
from app.config import settings
from app.utils.logger import logger


@dataclass
class GateScore:
    gate: int
    similarity: float


@dataclass
class ScoreResult:
    """Normalized scoring backend response."""
    gates: List[GateScore]
    adherence_score: float
    recommended_gate: Optional[int] = None


@dataclass
class GateProgressState:
    """Per-session gate state. Created at gate 1 when the session starts."""
    mode: ScriptMode
    current_gate: int = 1
    gate_similarities: Dict[int, float] = field(default_factory=dict)
    adherence_score: float = 0.0
    last_check_at: Optional[float] = None
    in_flight_request_id: Optional[int] = None

    @property
    def total_gates(self) -> int:
        return len(gates_for(self.mode))

    @property
    def current_similarity(self) -> float:
        return self.gate_similarities.get(self.current_gate, 0.0)

    def to_dict(self) -> Dict:
        gates = gates_for(self.mode)
        return {
            "mode": self.mode.value,
            "current_gate": self.current_gate,
            "current_gate_name": gates[self.current_gate - 1].full_name,
            "total_gates": len(gates),
            "adherence_score": self.adherence_score,
            "gate_similarities": [
                {
                    "gate": g.index,
                    "gate_name": g.short_name,
                    "similarity": self.gate_similarities.get(g.index, 0.0),
                }
                for g in gates
            ],
            "last_check_at": self.last_check_at,
        }


def _clamp_similarity(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


class GateProgressTracker:
    """
    Applies scoring results to a GateProgressState.

    Stateless apart from its threshold; one tracker can serve any number of
    sessions.
    """

    def __init__(self, on_script_threshold: Optional[float] = None):
        self.on_script_threshold = (
            on_script_threshold if on_script_threshold is not None else settings.ON_SCRIPT_THRESHOLD
        )

    def apply_score_result(
        self,
        state: GateProgressState,
        result: ScoreResult,
        checked_at: Optional[float] = None,
    ) -> bool:
        """
        Merge a scoring result into the session state.

        Returns True when the gate pointer moved forward.
        """
        total = state.total_gates

        # Partial results only overwrite the gates that were scored
        for score in result.gates:
            if 1 <= score.gate <= total:
                state.gate_similarities[score.gate] = _clamp_similarity(score.similarity)

        state.adherence_score = max(0.0, min(100.0, float(result.adherence_score)))
        state.last_check_at = checked_at

        previous_gate = state.current_gate
        target_gate = previous_gate

        scored_current = next((s for s in result.gates if s.gate == previous_gate), None)
        if (
            scored_current is not None
            and _clamp_similarity(scored_current.similarity) > self.on_script_threshold
            and previous_gate < total
        ):
            target_gate = previous_gate + 1

        recommended = result.recommended_gate
        if recommended is not None and recommended > previous_gate:
            target_gate = max(target_gate, min(total, recommended))

        if target_gate > previous_gate:
            state.current_gate = target_gate
            logger.info(
                f"[GATES] {state.mode.value}: gate {previous_gate} -> {target_gate} "
                f"(adherence={state.adherence_score:.0f})"
            )
            return True

        return False

    def reset(self, state: GateProgressState) -> None:
        """Clear all per-session gate state (session end)."""
        state.current_gate = 1
        state.gate_similarities.clear()
        state.adherence_score = 0.0
        state.last_check_at = None
        state.in_flight_request_id = None
