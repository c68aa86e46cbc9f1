from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple


@dataclass
class Counter:
    name: str
    help: str
    values: Dict[Tuple, float] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def inc(self, value: float = 1.0, **labels: Any) -> None:
        key = tuple(sorted(labels.items()))
        with self._lock:
            self.values[key] = self.values.get(key, 0.0) + value

    def get(self, **labels: Any) -> float:
        return self.values.get(tuple(sorted(labels.items())), 0.0)

    def total(self) -> float:
        return sum(self.values.values())

    def reset(self) -> None:
        with self._lock:
            self.values.clear()


# Predefined metrics
tap_events_total = Counter("tap_events_total", "Events captured by type")
tap_events_evicted_total = Counter("tap_events_evicted_total", "Events dropped from full ring buffers")
tap_listener_errors_total = Counter("tap_listener_errors_total", "Listener callbacks that raised, by source")
tap_capture_errors_total = Counter("tap_capture_errors_total", "Observation failures swallowed by taps, by tap")
hub_messages_sent_total = Counter("hub_messages_sent_total", "Messages queued to observers by type")
hub_messages_dropped_total = Counter("hub_messages_dropped_total", "Messages dropped for closed observers")

ALL_COUNTERS = (
    tap_events_total,
    tap_events_evicted_total,
    tap_listener_errors_total,
    tap_capture_errors_total,
    hub_messages_sent_total,
    hub_messages_dropped_total,
)


def snapshot() -> Dict[str, float]:
    """Totals for every predefined counter, keyed by metric name."""
    return {counter.name: counter.total() for counter in ALL_COUNTERS}
