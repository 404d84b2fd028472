"""
Scheduler
=========

Timer primitive the session runs on. All mutation happens inside callbacks
that the scheduler invokes one at a time, so a callback always sees the state
committed by the one before it.

VirtualScheduler is a deterministic clock driven explicitly with advance(),
used by tests, tools and any host that owns its own frame loop.
"""

from __future__ import annotations

import heapq
import itertools
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

Callback = Callable[[], None]


@dataclass(eq=False)
class TimerHandle:
    """A scheduled one-shot or periodic callback."""
    name: str
    due: float
    callback: Callback
    interval: Optional[float] = None
    cancelled: bool = field(default=False)

    @property
    def periodic(self) -> bool:
        return self.interval is not None


class TimerScheduler(Protocol):
    """What the session needs from a clock and timer source. Times are ms."""

    def now(self) -> float:
        ...

    def call_later(self, delay_ms: float, callback: Callback, name: str = "") -> TimerHandle:
        ...

    def call_every(self, interval_ms: float, callback: Callback, name: str = "") -> TimerHandle:
        ...

    def cancel(self, handle: Optional[TimerHandle]) -> None:
        ...


class VirtualScheduler:
    """
    Deterministic single-threaded scheduler.

    Callbacks fire in due order; callbacks due at the same time fire in the
    order they were scheduled. A zero-delay callback scheduled from inside
    another callback runs after it returns, within the same advance().
    """

    def __init__(self, start_ms: float = 0.0):
        self._now = float(start_ms)
        self._queue: List[Tuple[float, int, TimerHandle]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def _push(self, handle: TimerHandle) -> None:
        heapq.heappush(self._queue, (handle.due, next(self._seq), handle))

    def call_later(self, delay_ms: float, callback: Callback, name: str = "") -> TimerHandle:
        """Run callback once after delay_ms (0 = after the current callback)."""
        handle = TimerHandle(name=name, due=self._now + max(0.0, delay_ms), callback=callback)
        self._push(handle)
        return handle

    def call_every(self, interval_ms: float, callback: Callback, name: str = "") -> TimerHandle:
        """Run callback every interval_ms, first time one interval from now."""
        if interval_ms <= 0:
            raise ValueError(f"interval must be positive, got {interval_ms}")
        handle = TimerHandle(
            name=name, due=self._now + interval_ms, callback=callback, interval=interval_ms
        )
        self._push(handle)
        return handle

    def cancel(self, handle: Optional[TimerHandle]) -> None:
        """Cancel a handle. Cancelling twice or cancelling None is harmless."""
        if handle is not None:
            handle.cancelled = True

    @property
    def pending(self) -> List[TimerHandle]:
        """Live handles in due order."""
        return [h for _, _, h in sorted(self._queue) if not h.cancelled]

    def pending_names(self) -> List[str]:
        return [h.name for h in self.pending]

    def _pop_due(self, until: float) -> Optional[TimerHandle]:
        while self._queue and self._queue[0][0] <= until:
            _, _, handle = heapq.heappop(self._queue)
            if not handle.cancelled:
                return handle
        return None

    def _fire(self, handle: TimerHandle) -> None:
        self._now = max(self._now, handle.due)
        if handle.periodic:
            # Re-arm before running so the callback may cancel itself
            handle.due = handle.due + handle.interval
            self._push(handle)
        else:
            handle.cancelled = True
        logger.debug("t=%.0f firing %s", self._now, handle.name or handle.callback)
        handle.callback()

    def run_pending(self) -> int:
        """Run every callback already due. Returns the number fired."""
        fired = 0
        handle = self._pop_due(self._now)
        while handle is not None:
            self._fire(handle)
            fired += 1
            handle = self._pop_due(self._now)
        return fired

    def advance(self, ms: float) -> int:
        """
        Move the clock forward, firing callbacks on the way.

        Args:
            ms: Milliseconds to advance (>= 0).

        Returns:
            Number of callbacks fired.
        """
        if ms < 0:
            raise ValueError("Cannot advance backwards")
        target = self._now + ms
        fired = 0
        handle = self._pop_due(target)
        while handle is not None:
            self._fire(handle)
            fired += 1
            handle = self._pop_due(target)
        self._now = target
        return fired
