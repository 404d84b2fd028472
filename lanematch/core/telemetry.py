"""
Telemetry
=========

Observational event stream. Nothing in the engine depends on it for
correctness; it exists for debugging overlays, tools and tests.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

EVENT_KINDS = (
    "spawn_batch",
    "tap",
    "state_change",
    "emoji_appearance",
    "error",
    "warning",
    "worm",
    "milestone",
    "combo",
)


@dataclass(frozen=True)
class TelemetryEvent:
    """One recorded event."""
    kind: str
    timestamp: float
    data: Dict[str, Any] = field(default_factory=dict)


Listener = Callable[[TelemetryEvent], None]


class Telemetry:
    """
    Bounded in-memory event log with listener fan-out.

    A failing listener is logged and skipped; it never breaks the caller.
    """

    def __init__(self, max_events: int = 2000):
        self._events: Deque[TelemetryEvent] = deque(maxlen=max_events)
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, kind: str, timestamp: float, **data: Any) -> TelemetryEvent:
        """Record an event and notify listeners."""
        if kind not in EVENT_KINDS:
            raise ValueError(f"Unknown telemetry kind: {kind}")
        event = TelemetryEvent(kind=kind, timestamp=timestamp, data=data)
        self._events.append(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Telemetry listener failed on %s event", kind)
        return event

    def events(self, kind: Optional[str] = None) -> List[TelemetryEvent]:
        """Recorded events, optionally filtered by kind."""
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.kind == kind]

    def count(self, kind: str) -> int:
        return sum(1 for e in self._events if e.kind == kind)

    def clear(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)
