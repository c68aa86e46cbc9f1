"""Unit tests for EventStore."""

import threading

import pytest

from mcp_tap.core.event_store import EventStore
from mcp_tap.core.models import RequestEvent
from mcp_tap.exceptions import MalformedEventError


def _request(n):
    return {"type": "request", "id": n, "method": f"method-{n}"}


class TestEventStoreBuffer:
    """Ring buffer behaviour."""

    def test_emit_stamps_timestamp(self, bus, clock, request_event):
        """Test that emit assigns the store clock's timestamp."""
        event = bus.emit(request_event)

        assert isinstance(event, RequestEvent)
        assert event.timestamp == clock.now
        assert bus.event_count == 1

    def test_client_timestamp_is_ignored(self, bus, clock):
        """Test that a timestamp in the input never overrides the server clock."""
        event = bus.emit({**_request(1), "timestamp": 42})

        assert event.timestamp == clock.now

    def test_capacity_evicts_oldest(self, clock):
        """Test that the last K events survive, in emission order."""
        store = EventStore("s", max_events=3, clock=clock)
        for n in range(1, 5):
            store.emit(_request(n))

        assert [e.method for e in store.get_events()] == ["method-2", "method-3", "method-4"]
        assert store.event_count == 3

    def test_invalid_capacity(self):
        """Test that a non-positive capacity is rejected."""
        with pytest.raises(ValueError):
            EventStore("s", max_events=0)

    def test_malformed_event_leaves_buffer_untouched(self, bus):
        """Test that a malformed event is rejected before any mutation or notification."""
        calls = []
        bus.subscribe(calls.append)
        bus.emit(_request(1))

        with pytest.raises(MalformedEventError):
            bus.emit({"type": "notification"})
        with pytest.raises(MalformedEventError):
            bus.emit({"type": "bogus"})

        assert bus.event_count == 1
        assert len(calls) == 1

    def test_clear_keeps_listeners(self, bus):
        """Test that clear drops events silently and keeps subscriptions."""
        calls = []
        bus.subscribe(calls.append)
        bus.emit(_request(1))

        bus.clear()

        assert bus.get_events() == []
        assert len(calls) == 1
        bus.emit(_request(2))
        assert len(calls) == 2

    def test_snapshot(self, bus):
        """Test the JSON snapshot shape."""
        bus.emit(_request(1))

        snapshot = bus.to_dict()

        assert snapshot["sessionId"] == "test-session-123"
        assert snapshot["eventCount"] == 1
        assert snapshot["events"][0]["method"] == "method-1"


class TestEventStoreQueries:
    """get_events filtering."""

    def test_since_is_inclusive(self, bus, clock):
        """Test that since keeps events at or after the timestamp."""
        bus.emit(_request(1))
        t2 = clock.advance(10)
        bus.emit(_request(2))
        clock.advance(10)
        bus.emit(_request(3))

        assert [e.id for e in bus.get_events(since=t2)] == [2, 3]

    def test_since_in_future_is_empty(self, bus, clock):
        """Test that a future since returns nothing."""
        bus.emit(_request(1))

        assert bus.get_events(since=clock.now + 1000) == []

    def test_limit_returns_most_recent(self, bus):
        """Test that limit keeps the tail, in order."""
        for n in range(1, 6):
            bus.emit(_request(n))

        assert [e.id for e in bus.get_events(limit=2)] == [4, 5]
        assert [e.id for e in bus.get_events(limit=10)] == [1, 2, 3, 4, 5]
        assert bus.get_events(limit=0) == []

    def test_since_and_limit_combined(self, bus, clock):
        """Test that limit applies to the since-filtered matches."""
        bus.emit(_request(1))
        since = clock.advance(5)
        for n in range(2, 6):
            bus.emit(_request(n))

        assert [e.id for e in bus.get_events(since=since, limit=3)] == [3, 4, 5]

    def test_negative_limit(self, bus):
        """Test that a negative limit is a programming error."""
        with pytest.raises(ValueError):
            bus.get_events(limit=-1)

    def test_get_events_returns_copy(self, bus):
        """Test that callers cannot mutate the buffer through a snapshot."""
        bus.emit(_request(1))
        snapshot = bus.get_events()
        snapshot.clear()

        assert bus.event_count == 1


class TestEventStoreListeners:
    """Synchronous local pub/sub."""

    def test_listeners_called_in_order(self, bus):
        """Test that every listener sees the finalized event before emit returns."""
        seen = []
        bus.subscribe(lambda e: seen.append(("a", e.id)))
        bus.subscribe(lambda e: seen.append(("b", e.id)))

        bus.emit(_request(1))

        assert seen == [("a", 1), ("b", 1)]

    def test_unsubscribe_stops_delivery(self, bus):
        """Test that an unsubscribed listener's call count stops increasing."""
        first, second = [], []
        bus.subscribe(first.append)
        bus.subscribe(second.append)
        bus.emit(_request(1))

        bus.unsubscribe(first.append)
        bus.emit(_request(2))

        assert len(first) == 1
        assert len(second) == 2

    def test_unsubscribe_unknown_listener(self, bus):
        """Test that removing an unknown listener is a no-op."""
        bus.unsubscribe(lambda e: None)

        assert bus.listener_count == 0

    def test_failing_listener_is_isolated(self, bus):
        """Test that a raising listener neither propagates nor blocks others."""
        seen = []

        def broken(event):
            raise RuntimeError("listener bug")

        bus.subscribe(broken)
        bus.subscribe(seen.append)

        event = bus.emit(_request(1))

        assert seen == [event]
        assert bus.get_events() == [event]

    def test_listener_sees_appended_event(self, bus):
        """Test that the buffer already holds the event when listeners run."""
        counts = []
        bus.subscribe(lambda e: counts.append(bus.event_count))

        bus.emit(_request(1))
        bus.emit(_request(2))

        assert counts == [1, 2]

    def test_concurrent_emits_are_atomic(self, clock):
        """Test that threads emitting concurrently never interleave dispatch."""
        store = EventStore("s", max_events=10_000, clock=clock)
        active = []
        overlaps = []

        def listener(event):
            active.append(event)
            if len(active) > 1:
                overlaps.append(event)
            active.pop()

        store.subscribe(listener)

        def worker(offset):
            for n in range(200):
                store.emit(_request(offset + n))

        threads = [threading.Thread(target=worker, args=(i * 1000,)) for i in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert store.event_count == 800
        assert overlaps == []
