"""In-process counters for the observability pipeline."""

from .metrics import Counter, snapshot

__all__ = ["Counter", "snapshot"]
