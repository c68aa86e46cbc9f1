from __future__ import annotations

import logging
import typing as t

import mcp.types as types
from mcp.shared.message import SessionMessage
from pydantic import BaseModel

from mcp_tap.monitoring import metrics

from .event_store import EventStore
from .models import JSON, EventType

_logger = logging.getLogger(__name__)


def normalize_message(message: t.Any) -> t.Optional[JSON]:
    """Turn an outbound JSON-RPC message into a plain dict.

    Accepts dicts, `SessionMessage` wrappers, `JSONRPCMessage` root models
    and any other pydantic model. Returns None for anything else.
    """
    if isinstance(message, SessionMessage):
        message = message.message
    if isinstance(message, types.JSONRPCMessage):
        message = message.root
    if isinstance(message, BaseModel):
        message = message.model_dump(by_alias=True, exclude_none=True)
    if isinstance(message, dict):
        return message
    return None


def classify_outgoing(message: t.Any) -> t.Optional[JSON]:
    """Map a server-to-client message onto a notification or response event.

    Classification is by field presence only: `method` without `id` is a
    notification, `id` with `result` or `error` is a response. Anything else
    returns None and is not observed.
    """
    msg = normalize_message(message)
    if msg is None:
        return None
    if "method" in msg and "id" not in msg:
        if not isinstance(msg["method"], str):
            return None
        return {"type": EventType.NOTIFICATION.value, "method": msg["method"], "params": msg.get("params")}
    if "id" in msg and ("result" in msg or "error" in msg):
        error = msg.get("error")
        return {
            "type": EventType.RESPONSE.value,
            "id": msg["id"],
            "result": msg.get("result"),
            "error": error if isinstance(error, dict) else None,
        }
    return None


def classify_incoming(message: t.Any) -> t.Optional[JSON]:
    """Map a client-to-server message onto a request event, if it has a method."""
    msg = normalize_message(message)
    if msg is None or not isinstance(msg.get("method"), str):
        return None
    return {"type": EventType.REQUEST.value, "id": msg.get("id"), "method": msg["method"], "params": msg.get("params")}


def iter_messages(payload: t.Any) -> t.Iterator[t.Any]:
    """Yield the messages of a JSON-RPC payload, flattening batches."""
    if isinstance(payload, list):
        yield from payload
    else:
        yield payload


def emit_safely(bus: EventStore, event: JSON, tap: str) -> None:
    """Emit on behalf of a tap; failures are logged and never re-raised."""
    try:
        bus.emit(event)
    except Exception:
        metrics.tap_capture_errors_total.inc(tap=tap)
        _logger.warning("%s: dropped %s event for session %s", tap, event.get("type"), bus.session_id, exc_info=True)


class ObservableSendChannel:
    """Wraps a duplex channel's `send` so outbound messages become events.

    Works with anything exposing an async `send(message, ...)`: an MCP
    transport, or the anyio write stream a lowlevel `Server.run` writes
    `SessionMessage` objects to. The event is emitted before the real send;
    other attributes are forwarded to the wrapped channel unchanged.

    Usage:
        write_stream = ObservableSendChannel(write_stream, directory.get_or_create_bus(sid))
        await server.run(read_stream, write_stream, init_options)
    """

    def __init__(self, channel: t.Any, bus: EventStore) -> None:
        if not callable(getattr(channel, "send", None)):
            raise TypeError("wrapped channel must have an async send(message) method")
        self._channel = channel
        self._bus = bus

    @property
    def wrapped(self) -> t.Any:
        return self._channel

    async def send(self, message: t.Any, *args: t.Any, **kwargs: t.Any) -> t.Any:
        try:
            event = classify_outgoing(message)
        except Exception:
            metrics.tap_capture_errors_total.inc(tap="channel")
            _logger.warning("ObservableSendChannel: could not classify outbound message", exc_info=True)
            event = None
        if event is not None:
            emit_safely(self._bus, event, "channel")
        return await self._channel.send(message, *args, **kwargs)

    def __getattr__(self, name: str) -> t.Any:
        if name == "_channel":
            raise AttributeError(name)
        return getattr(self._channel, name)

    async def __aenter__(self) -> "ObservableSendChannel":
        await self._channel.__aenter__()
        return self

    async def __aexit__(self, *exc_info: t.Any) -> t.Optional[bool]:
        return await self._channel.__aexit__(*exc_info)
