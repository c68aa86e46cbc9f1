from __future__ import annotations

import logging
import threading
import typing as t

from mcp_tap.monitoring import metrics

from .event_store import Clock, EventStore
from .models import Event, SessionMetadata, SessionSummary

_logger = logging.getLogger(__name__)

SIGNAL_EVENT = "event"
SIGNAL_SESSION_CREATED = "session_created"
SIGNAL_SESSION_CLOSED = "session_closed"
SIGNALS = (SIGNAL_EVENT, SIGNAL_SESSION_CREATED, SIGNAL_SESSION_CLOSED)


class SessionDirectory:
    """Owns one EventStore per session id and fans their events out.

    Signals, subscribable through `add_listener`:

    - ``event(session_id, event)`` for every event emitted on any store
    - ``session_created(session_id, metadata)`` the first time metadata is set
    - ``session_closed(session_id)`` when a session is closed

    This is the only component that creates or destroys stores. Stores are
    never called while the directory lock is held, so listeners running
    inside `EventStore.emit` may call back into the directory.
    """

    def __init__(self, max_events_per_session: int = 1000, clock: t.Optional[Clock] = None) -> None:
        self._max_events = max_events_per_session
        self._clock = clock
        self._buses: t.Dict[str, EventStore] = {}
        self._metadata: t.Dict[str, SessionMetadata] = {}
        self._forwarders: t.Dict[str, t.Callable[[Event], None]] = {}
        self._listeners: t.Dict[str, t.List[t.Callable[..., None]]] = {name: [] for name in SIGNALS}
        self._lock = threading.RLock()

    def add_listener(self, signal: str, callback: t.Callable[..., None]) -> None:
        if signal not in self._listeners:
            raise ValueError(f"unknown signal {signal!r}")
        with self._lock:
            self._listeners[signal].append(callback)

    def remove_listener(self, signal: str, callback: t.Callable[..., None]) -> None:
        if signal not in self._listeners:
            raise ValueError(f"unknown signal {signal!r}")
        with self._lock:
            try:
                self._listeners[signal].remove(callback)
            except ValueError:
                pass

    def _fire(self, signal: str, *args: t.Any) -> None:
        for callback in list(self._listeners[signal]):
            try:
                callback(*args)
            except Exception:
                metrics.tap_listener_errors_total.inc(source=f"directory.{signal}")
                _logger.exception("SessionDirectory %s listener failed", signal)

    def get_or_create_bus(self, session_id: str) -> EventStore:
        bus = self._buses.get(session_id)
        if bus is not None:
            return bus

        candidate = EventStore(session_id, max_events=self._max_events, clock=self._clock)

        def forward(event: Event, _sid: str = session_id) -> None:
            self._fire(SIGNAL_EVENT, _sid, event)

        candidate.subscribe(forward)
        with self._lock:
            bus = self._buses.setdefault(session_id, candidate)
            if bus is candidate:
                self._forwarders[session_id] = forward
                _logger.debug("SessionDirectory: created bus sid=%s", session_id)
        return bus

    def get_bus(self, session_id: str) -> t.Optional[EventStore]:
        return self._buses.get(session_id)

    def set_session_metadata(self, session_id: str, metadata: SessionMetadata) -> None:
        """Attach metadata to an existing session.

        Does nothing if the session has no bus. Only the first call for a
        session fires ``session_created``.
        """
        with self._lock:
            if session_id not in self._buses:
                return
            is_new = session_id not in self._metadata
            self._metadata[session_id] = metadata
        if is_new:
            self._fire(SIGNAL_SESSION_CREATED, session_id, metadata)

    def get_session_metadata(self, session_id: str) -> t.Optional[SessionMetadata]:
        return self._metadata.get(session_id)

    def close_session(self, session_id: str) -> t.Optional[t.List[Event]]:
        """Remove a session and return its buffered history for archiving."""
        with self._lock:
            bus = self._buses.pop(session_id, None)
            if bus is None:
                return None
            forward = self._forwarders.pop(session_id, None)
            self._metadata.pop(session_id, None)
        # Detached stores held by taps keep buffering locally but stop publishing
        if forward is not None:
            bus.unsubscribe(forward)
        events = bus.get_events()
        _logger.debug("SessionDirectory: closed sid=%s events=%d", session_id, len(events))
        self._fire(SIGNAL_SESSION_CLOSED, session_id)
        return events

    def get_all_sessions(self) -> t.List[str]:
        with self._lock:
            return list(self._buses.keys())

    def get_session_summaries(self) -> t.List[SessionSummary]:
        with self._lock:
            items = list(self._buses.items())
            metadata = dict(self._metadata)
        summaries = []
        for session_id, bus in items:
            meta = metadata.get(session_id)
            summaries.append(
                SessionSummary(
                    session_id=session_id,
                    event_count=bus.event_count,
                    client_info=meta.client_info if meta else None,
                    created_at=meta.created_at if meta else None,
                )
            )
        return summaries
