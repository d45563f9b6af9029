# backend/app/services/check_throttle.py
"""
Rate limiter for script scoring requests.

request() can be called on every transcript delta. At most one scoring
request goes out per interval; calls made during the cool-down collapse into
a single deferred request that fires when the window reopens.

Every issued request gets a strictly increasing id. Responses are applied
only while their id is still the latest one (see is_current()), which is how
a slow response for an old transcript snapshot gets dropped.
"""
from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional, Set

from app.config import settings
from app.utils.logger import logger


class CheckThrottle:
    """
    Per-session scoring throttle.

    The window opens when the throttle is created, so the first request of a
    session goes out no earlier than one interval after activation.
    """

    def __init__(
        self,
        issue: Callable[[int], Awaitable[None]],
        interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        name: str = "",
        start_after: int = 0,
    ):
        self._issue_cb = issue
        self.interval = interval if interval is not None else settings.SCRIPT_CHECK_INTERVAL
        self._clock = clock
        self.name = name

        self._window_anchor = clock()
        # Ids continue from start_after so they stay unique across throttles of one session
        self._latest_request_id = start_after
        self._deferred_task: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def latest_request_id(self) -> int:
        return self._latest_request_id

    @property
    def has_pending(self) -> bool:
        return self._deferred_task is not None and not self._deferred_task.done()

    @property
    def closed(self) -> bool:
        return self._closed

    def request(self) -> Optional[int]:
        """
        Ask for a scoring request.

        Returns the request id when one was issued right away, None when the
        call was deferred or coalesced into an already pending one.
        """
        if self._closed:
            return None

        if self.has_pending:
            logger.debug(f"[THROTTLE] {self.name}: coalesced into pending check")
            return None

        wait = self._window_anchor + self.interval - self._clock()
        if wait > 0:
            self._deferred_task = asyncio.create_task(self._deferred_issue(wait))
            logger.debug(f"[THROTTLE] {self.name}: deferred check in {wait:.2f}s")
            return None

        return self._issue()

    def is_current(self, request_id: int) -> bool:
        """True only for the most recently issued request of an open throttle."""
        return not self._closed and request_id == self._latest_request_id

    def cancel_pending(self) -> None:
        """Drop the deferred check, if any."""
        task = self._deferred_task
        self._deferred_task = None
        if task is not None and not task.done():
            task.cancel()

    def close(self) -> None:
        """
        Stop the throttle for good (session end).

        Cancels the deferred check and invalidates every outstanding request
        id, so responses still in flight are discarded when they land.
        """
        self.cancel_pending()
        self._closed = True
        self._latest_request_id += 1

    def _issue(self) -> int:
        self._latest_request_id += 1
        request_id = self._latest_request_id
        self._window_anchor = self._clock()

        task = asyncio.create_task(self._run(request_id))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        logger.debug(f"[THROTTLE] {self.name}: issued check #{request_id}")
        return request_id

    async def _deferred_issue(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._deferred_task = None
        if not self._closed:
            self._issue()

    async def _run(self, request_id: int) -> None:
        try:
            await self._issue_cb(request_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[THROTTLE] {self.name}: check #{request_id} handler failed: {e}")
