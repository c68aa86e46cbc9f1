from __future__ import annotations


class TapError(Exception):
    """Base class for errors raised by mcp_tap."""


class MalformedEventError(TapError, ValueError):
    """Raised when an event cannot be built from its input.

    Raised before any buffer mutation, so a rejected event is never visible
    to listeners or readers.
    """


class InvalidClientMessage(TapError):
    """An observer sent a message the hub cannot act on."""
