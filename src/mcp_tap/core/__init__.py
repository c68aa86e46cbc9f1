"""Core event pipeline: stores, session directory and protocol taps."""

from .asgi_wrapper import ASGITapWrapper, SSEFrameParser
from .directory import SessionDirectory
from .event_store import EventStore
from .interceptor import ObservableSendChannel, classify_incoming, classify_outgoing
from .models import (
    ClientInfo,
    Event,
    EventType,
    NotificationEvent,
    RequestEvent,
    ResponseEvent,
    SessionMetadata,
    SessionSummary,
    TaskCreatedEvent,
    TaskStatusEvent,
    event_from_dict,
)
from .task_store import ObservableTaskStore, TaskStore

__all__ = [
    # Event storage
    "EventStore",
    "SessionDirectory",
    # Protocol taps
    "ASGITapWrapper",
    "SSEFrameParser",
    "ObservableSendChannel",
    "ObservableTaskStore",
    "TaskStore",
    "classify_incoming",
    "classify_outgoing",
    # Models
    "Event",
    "EventType",
    "RequestEvent",
    "ResponseEvent",
    "NotificationEvent",
    "TaskCreatedEvent",
    "TaskStatusEvent",
    "ClientInfo",
    "SessionMetadata",
    "SessionSummary",
    "event_from_dict",
]
