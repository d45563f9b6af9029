# backend/app/agents/heat_streak.py
"""
Heat streak: consecutive on-script readings for the current gate and the
combo multiplier that goes with them.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from app.config import settings


@dataclass(frozen=True)
class MultiplierTier:
    min_streak: int
    multiplier: float
    color: str


# Ascending by min_streak
MULTIPLIER_TIERS: Tuple[MultiplierTier, ...] = (
    MultiplierTier(3, 1.1, "#ef4444"),   # Red/Orange
    MultiplierTier(6, 1.2, "#f59e0b"),   # Amber
    MultiplierTier(10, 1.3, "#3b82f6"),  # Blue
    MultiplierTier(15, 1.4, "#10b981"),  # Emerald
    MultiplierTier(25, 1.5, "#10b981"),  # Goat Emerald
)

BASE_MULTIPLIER = 1.0
BASE_COLOR = "#10b981"


@dataclass
class StreakState:
    streak: int = 0
    multiplier: float = BASE_MULTIPLIER
    color: str = BASE_COLOR
    is_active: bool = False

    def to_dict(self) -> Dict:
        return {
            "streak": self.streak,
            "multiplier": self.multiplier,
            "color": self.color,
            "is_active": self.is_active,
        }


def tier_for(streak: int) -> Optional[MultiplierTier]:
    """Highest tier whose minimum the streak has reached, None below the first."""
    selected = None
    for tier in MULTIPLIER_TIERS:
        if tier.min_streak <= streak:
            selected = tier
        else:
            break
    return selected


class StreakEngine:
    """
    Derives the streak from the stream of current-gate similarities.

    The counter starts at 1 on the first on-script reading, but the streak is
    only reported as active once it reaches the requirement (3 by default).
    """

    def __init__(
        self,
        on_script_threshold: Optional[float] = None,
        streak_requirement: Optional[int] = None,
    ):
        self.on_script_threshold = (
            on_script_threshold if on_script_threshold is not None else settings.ON_SCRIPT_THRESHOLD
        )
        self.streak_requirement = (
            streak_requirement if streak_requirement is not None else settings.STREAK_REQUIREMENT
        )
        self.state = StreakState()
        self.best_streak = 0
        self._previous_similarity = 0.0

    def update(self, similarity: float) -> StreakState:
        on_script = similarity >= self.on_script_threshold

        if on_script and self._previous_similarity >= self.on_script_threshold:
            streak = self.state.streak + 1
        elif on_script:
            streak = 1
        else:
            streak = 0

        self._previous_similarity = similarity
        self._set_streak(streak)
        return self.state

    def reset(self) -> None:
        self._previous_similarity = 0.0
        self.best_streak = 0
        self.state = StreakState()

    def _set_streak(self, streak: int) -> None:
        tier = tier_for(streak)
        self.state = StreakState(
            streak=streak,
            multiplier=tier.multiplier if tier else BASE_MULTIPLIER,
            color=tier.color if tier else BASE_COLOR,
            is_active=streak >= self.streak_requirement,
        )
        self.best_streak = max(self.best_streak, streak)
