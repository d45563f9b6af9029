# backend/app/services/voice_hints.py
"""
Stuck-gate coaching hints.

Watches the current gate's similarity. When it stays below the low threshold
on the same gate for GATE_STUCK_SECONDS, one coaching hint for that gate is
delivered. Hints are rate limited by HINT_COOLDOWN_SECONDS; a hint that would
land inside the cooldown is dropped, not queued.

At most one timer is outstanding per session. Any change that breaks its
premise (gate moved, similarity recovered, hints disabled, session ended)
cancels it.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Set

from app.config import settings
from app.utils.logger import logger


@dataclass
class HintState:
    last_hint_at: Optional[float] = None
    stuck_since: Optional[float] = None
    last_gate: int = 1

    def to_dict(self) -> Dict:
        return {
            "last_hint_at": self.last_hint_at,
            "stuck_since": self.stuck_since,
            "last_gate": self.last_gate,
        }


class CoachTrigger:
    def __init__(
        self,
        deliver: Callable[[int, str], Awaitable[None]],
        hint_for: Callable[[int], Optional[str]],
        low_threshold: Optional[float] = None,
        stuck_seconds: Optional[float] = None,
        cooldown_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        name: str = "",
    ):
        self._deliver = deliver
        self._hint_for = hint_for
        self.low_threshold = (
            low_threshold if low_threshold is not None else settings.LOW_SIMILARITY_THRESHOLD
        )
        self.stuck_seconds = stuck_seconds if stuck_seconds is not None else settings.GATE_STUCK_SECONDS
        self.cooldown_seconds = (
            cooldown_seconds if cooldown_seconds is not None else settings.HINT_COOLDOWN_SECONDS
        )
        self._clock = clock
        self.name = name

        self.state = HintState()
        self.enabled = True
        self.hints_sent = 0
        self._timer: Optional[asyncio.Task] = None
        self._deliveries: Set[asyncio.Task] = set()
        self._stopped = False

    @property
    def has_pending_timer(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def observe(self, gate: int, similarity: float, now: Optional[float] = None) -> None:
        """Feed the latest current-gate reading."""
        if self._stopped or not self.enabled:
            return
        now = self._clock() if now is None else now

        if gate != self.state.last_gate:
            self.state.last_gate = gate
            self.state.stuck_since = None
            self._cancel_timer()

        if similarity >= self.low_threshold:
            # Gate is progressing
            self.state.stuck_since = None
            self._cancel_timer()
            return

        if self.state.stuck_since is None:
            self.state.stuck_since = now

        elapsed = now - self.state.stuck_since
        if elapsed >= self.stuck_seconds:
            self._cancel_timer()
            self._attempt_hint(gate, now)
            self.state.stuck_since = now
        else:
            self._schedule(gate, self.stuck_seconds - elapsed)

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = bool(enabled)
        if not self.enabled:
            self._cancel_timer()
            self.state.stuck_since = None

    def stop(self) -> None:
        """Session end: nothing may fire after this returns."""
        self._stopped = True
        self._cancel_timer()
        for task in list(self._deliveries):
            task.cancel()
        self._deliveries.clear()

    def _schedule(self, gate: int, delay: float) -> None:
        # Replace the handle, cancelling the old one
        self._cancel_timer()
        self._timer = asyncio.create_task(self._fire_after(gate, delay))

    def _cancel_timer(self) -> None:
        timer = self._timer
        self._timer = None
        if timer is not None and not timer.done():
            timer.cancel()

    async def _fire_after(self, gate: int, delay: float) -> None:
        await asyncio.sleep(delay)
        self._timer = None
        if self._stopped or not self.enabled or gate != self.state.last_gate:
            return
        now = self._clock()
        self._attempt_hint(gate, now)
        self.state.stuck_since = now

    def _attempt_hint(self, gate: int, now: float) -> bool:
        last = self.state.last_hint_at
        if last is not None and now - last < self.cooldown_seconds:
            logger.debug(f"[COACH] {self.name}: hint for gate {gate} dropped (cooldown)")
            return False

        message = self._hint_for(gate)
        if not message:
            return False

        self.state.last_hint_at = now
        self.hints_sent += 1
        logger.info(f"[COACH] {self.name}: stuck on gate {gate}, sending hint")

        task = asyncio.create_task(self._safe_deliver(gate, message))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)
        return True

    async def _safe_deliver(self, gate: int, message: str) -> None:
        try:
            await self._deliver(gate, message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[COACH] {self.name}: hint delivery failed for gate {gate}: {e}")
