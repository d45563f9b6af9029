# backend/app/agents/peak_mode.py
"""
Peak mode ("goat mode"): sustained excellence detection.

Turns on once the adherence score has stayed at or above the peak score for
a continuous stretch (90+ for 30s by default). Any reading below the peak
score turns it off immediately and restarts the clock.

While active, presentation logic applies PEAK_MODE_MULTIPLIER to XP.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from app.config import settings
from app.utils.logger import logger

PEAK_MODE_MULTIPLIER = 2.0

# XP policy for the end-of-session award
BASE_XP_PER_SECOND = 1
PRO_MODE_MULTIPLIER = 1.5  # seconds spent with the script hidden


@dataclass
class PeakModeState:
    active: bool = False
    activated_at: Optional[float] = None

    def to_dict(self) -> Dict:
        return {
            "active": self.active,
            "activated_at": self.activated_at,
            "multiplier": PEAK_MODE_MULTIPLIER if self.active else 1.0,
        }


class SustainedExcellenceDetector:
    def __init__(
        self,
        peak_score: Optional[float] = None,
        required_seconds: Optional[float] = None,
    ):
        self.peak_score = peak_score if peak_score is not None else settings.PEAK_MODE_SCORE
        self.required_seconds = (
            required_seconds if required_seconds is not None else settings.PEAK_MODE_SECONDS
        )
        self.state = PeakModeState()
        self.high_since: Optional[float] = None
        self.best_score = 0.0
        self._accumulated_seconds = 0.0

    def update(self, adherence_score: float, now: float) -> PeakModeState:
        self.best_score = max(self.best_score, adherence_score)

        if adherence_score < self.peak_score:
            if self.state.active:
                logger.info(f"[PEAK] deactivated at score {adherence_score:.0f}")
            self._deactivate(now)
            self.high_since = None
            return self.state

        if self.high_since is None:
            self.high_since = now

        if not self.state.active and now - self.high_since >= self.required_seconds:
            self.state = PeakModeState(active=True, activated_at=now)
            logger.info(f"[PEAK] activated after {now - self.high_since:.0f}s at {adherence_score:.0f}+")

        return self.state

    def total_active_seconds(self, now: float) -> float:
        """Seconds spent in peak mode so far, including a stretch still running."""
        running = now - self.state.activated_at if self.state.active else 0.0
        return self._accumulated_seconds + running

    def reset(self) -> None:
        self.state = PeakModeState()
        self.high_since = None
        self.best_score = 0.0
        self._accumulated_seconds = 0.0

    def _deactivate(self, now: float) -> None:
        if self.state.active and self.state.activated_at is not None:
            self._accumulated_seconds += max(0.0, now - self.state.activated_at)
        self.state = PeakModeState()


def calculate_session_xp(
    call_seconds: float,
    peak_seconds: float = 0.0,
    peak_score: float = 0.0,
    script_hidden_seconds: float = 0.0,
) -> Dict[str, int]:
    """
    XP earned by one training call.

    Peak-mode seconds pay PEAK_MODE_MULTIPLIER on top of the base rate,
    script-hidden seconds pay PRO_MODE_MULTIPLIER, and a best adherence of
    90+ adds one XP per point above 90.
    """
    base_xp = int(call_seconds * BASE_XP_PER_SECOND)
    peak_xp = int(peak_seconds * BASE_XP_PER_SECOND * PEAK_MODE_MULTIPLIER)
    pro_xp = int(script_hidden_seconds * BASE_XP_PER_SECOND * PRO_MODE_MULTIPLIER)
    bonus_xp = int(peak_score - 90) if peak_score >= 90 else 0

    return {
        "base_xp": base_xp,
        "peak_mode_xp": peak_xp,
        "pro_mode_xp": pro_xp,
        "bonus_xp": bonus_xp,
        "total_xp": base_xp + peak_xp + pro_xp + bonus_xp,
    }
