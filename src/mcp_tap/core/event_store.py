from __future__ import annotations

import logging
import threading
import time
import typing as t
from collections import deque

from mcp_tap.monitoring import metrics

from .models import JSON, Event, event_from_dict

_logger = logging.getLogger(__name__)

EventListener = t.Callable[[Event], None]
Clock = t.Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)


class EventStore:
    """Per-session event history with synchronous pub/sub.

    Events live in a bounded ring buffer: once `max_events` is reached the
    oldest event is dropped for every new one. Listeners are called inline,
    in registration order, before `emit()` returns, so each listener sees a
    session's events in exact emission order.

    The append and the dispatch happen under one re-entrant lock, which keeps
    emissions from concurrent threads atomic for every listener.
    """

    def __init__(self, session_id: str, max_events: int = 1000, clock: t.Optional[Clock] = None) -> None:
        if max_events < 1:
            raise ValueError("max_events must be at least 1")
        self.session_id = session_id
        self._max_events = max_events
        self._clock = clock or now_ms
        self._events: t.Deque[Event] = deque(maxlen=max_events)
        self._listeners: t.List[EventListener] = []
        self._lock = threading.RLock()

    @property
    def max_events(self) -> int:
        return self._max_events

    @property
    def event_count(self) -> int:
        return len(self._events)

    def emit(self, event: t.Mapping[str, t.Any]) -> Event:
        """Timestamp, buffer and publish an event given in wire shape.

        Raises MalformedEventError, leaving the buffer untouched, if the
        input is missing a field its type requires.
        """
        with self._lock:
            full_event = event_from_dict(event, self._clock())
            if len(self._events) == self._max_events:
                metrics.tap_events_evicted_total.inc(session=self.session_id)
            self._events.append(full_event)
            metrics.tap_events_total.inc(type=full_event.type.value)
            for listener in list(self._listeners):
                try:
                    listener(full_event)
                except Exception:
                    metrics.tap_listener_errors_total.inc(source="event_store")
                    _logger.exception("EventStore listener failed for session %s", self.session_id)
        return full_event

    def get_events(self, since: t.Optional[float] = None, limit: t.Optional[int] = None) -> t.List[Event]:
        """Return buffered events, oldest first.

        `since` keeps events with `timestamp >= since`. `limit` keeps the most
        recent `limit` of the matches.
        """
        if limit is not None and limit < 0:
            raise ValueError("limit must not be negative")
        with self._lock:
            result = list(self._events)
        if since is not None:
            result = [e for e in result if e.timestamp >= since]
        if limit is not None and len(result) > limit:
            result = result[len(result) - limit :]
        return result

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def subscribe(self, listener: EventListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: EventListener) -> None:
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def to_dict(self) -> JSON:
        with self._lock:
            events = [e.to_dict() for e in self._events]
        return {"sessionId": self.session_id, "events": events, "eventCount": len(events)}
