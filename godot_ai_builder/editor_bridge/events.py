"""In-process event stream feeding the editor status panel."""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)

MAX_EVENTS = 500


@dataclass(frozen=True)
class Event:
    kind: str  # "log" or "phase"
    message: str
    timestamp: int
    data: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"kind": self.kind, "message": self.message, "timestamp": self.timestamp}
        if self.data is not None:
            out["data"] = self.data
        return out


Subscriber = Callable[[Event], None]


class EventLog:
    """Bounded ring of recent events plus signal-style subscribers.

    Subscribers run synchronously on emit. A failing subscriber is logged and
    skipped; it never affects the request that emitted the event.
    """

    def __init__(self, max_events: int = MAX_EVENTS) -> None:
        self._events: deque[Event] = deque(maxlen=max_events)
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, kind: str, message: str, data: dict[str, Any] | None = None) -> Event:
        event = Event(kind=kind, message=message, timestamp=int(time.time()), data=data)
        self._events.append(event)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.warning("Event subscriber %r failed", callback, exc_info=True)
        return event

    def recent(self, limit: int = 50) -> list[Event]:
        if limit <= 0:
            return []
        return list(self._events)[-limit:]

    def __len__(self) -> int:
        return len(self._events)
