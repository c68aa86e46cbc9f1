"""mcp_tap

Live observability for MCP servers: captures protocol traffic and task
lifecycle activity per session in bounded ring buffers and streams it to
remote observers over a WebSocket, with historical backfill.
"""

from .api import create_read_routes
from .app import create_observability_app
from .core.asgi_wrapper import ASGITapWrapper
from .core.directory import SessionDirectory
from .core.event_store import EventStore
from .core.interceptor import ObservableSendChannel
from .core.models import (
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
)
from .core.task_store import ObservableTaskStore, TaskStore
from .exceptions import InvalidClientMessage, MalformedEventError, TapError
from .realtime.hub import BroadcastHub
from .utils.config import ObservabilityConfig

__all__ = [
    "EventStore",
    "SessionDirectory",
    "ASGITapWrapper",
    "ObservableSendChannel",
    "ObservableTaskStore",
    "TaskStore",
    "BroadcastHub",
    "create_observability_app",
    "create_read_routes",
    "ObservabilityConfig",
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
    "TapError",
    "MalformedEventError",
    "InvalidClientMessage",
]

__version__ = "0.1.0"
