from __future__ import annotations

import itertools
import json
import logging
import math
import typing as t

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from starlette.routing import WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect

from mcp_tap.core.directory import (
    SIGNAL_EVENT,
    SIGNAL_SESSION_CLOSED,
    SIGNAL_SESSION_CREATED,
    SessionDirectory,
)
from mcp_tap.core.models import JSON, Event, SessionMetadata
from mcp_tap.exceptions import InvalidClientMessage
from mcp_tap.monitoring import metrics
from mcp_tap.utils.config import HubConfig

_logger = logging.getLogger(__name__)

CLIENT_MESSAGE_TYPES = ("subscribe", "unsubscribe", "backfill", "list_sessions")


class ObserverConnection:
    """One observer and its subscriptions.

    Outgoing messages go through a bounded memory stream drained by the
    connection's writer task. Queuing never blocks the emitter and messages
    leave in the order they were queued. When an observer falls
    `max_queued_messages` behind, new messages for it are dropped.
    """

    def __init__(self, connection_id: str, send_stream: MemoryObjectSendStream) -> None:
        self.id = connection_id
        self.subscriptions: t.Set[str] = set()
        self._send_stream = send_stream
        self.closed = False

    def send(self, message: JSON) -> bool:
        """Queue a message; dropped if the connection is closed or backed up."""
        if self.closed:
            metrics.hub_messages_dropped_total.inc(type=message.get("type"))
            return False
        try:
            self._send_stream.send_nowait(message)
        except anyio.WouldBlock:
            metrics.hub_messages_dropped_total.inc(type=message.get("type"), reason="backlog")
            _logger.debug("BroadcastHub: %s is behind; dropped %s", self.id, message.get("type"))
            return False
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            self.closed = True
            metrics.hub_messages_dropped_total.inc(type=message.get("type"))
            return False
        metrics.hub_messages_sent_total.inc(type=message.get("type"))
        return True

    def close(self) -> None:
        self.closed = True
        self._send_stream.close()


def _session_payload(session_id: str, metadata: t.Optional[SessionMetadata]) -> JSON:
    payload: JSON = {"sessionId": session_id}
    if metadata is not None and metadata.client_info is not None:
        payload["clientInfo"] = metadata.client_info.to_dict()
    if metadata is not None and metadata.created_at is not None:
        payload["createdAt"] = metadata.created_at.isoformat()
    return payload


def _optional_number(
    msg: JSON, key: str, minimum: t.Optional[int] = None, integer: bool = False
) -> t.Optional[t.Union[int, float]]:
    value = msg.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise InvalidClientMessage(f"'{key}' must be a number")
    if integer:
        if value != int(value):
            raise InvalidClientMessage(f"'{key}' must be an integer")
        value = int(value)
    if minimum is not None and value < minimum:
        raise InvalidClientMessage(f"'{key}' must be at least {minimum}")
    return value


def parse_client_message(raw: t.Union[str, bytes]) -> JSON:
    """Decode and validate one observer message, raising InvalidClientMessage."""
    try:
        msg = json.loads(raw)
    except ValueError:
        raise InvalidClientMessage("Invalid JSON") from None
    if not isinstance(msg, dict):
        raise InvalidClientMessage("Message must be a JSON object")
    msg_type = msg.get("type")
    if msg_type not in CLIENT_MESSAGE_TYPES:
        raise InvalidClientMessage(f"Unknown message type: {msg_type!r}")
    if msg_type != "list_sessions" and not isinstance(msg.get("sessionId"), str):
        raise InvalidClientMessage(f"'{msg_type}' requires a string sessionId")
    return msg


class BroadcastHub:
    """Relays directory events to WebSocket observers.

    Observers send ``subscribe``/``unsubscribe`` (a session id or the
    wildcard), ``backfill`` and ``list_sessions``. A connection receives
    ``event`` messages for sessions it subscribed to, or for every session
    when subscribed to the wildcard. ``session_created``/``session_closed``
    go to wildcard subscribers only. Nothing is kept per observer after it
    disconnects; a reconnecting observer subscribes and backfills again.

    Events must be emitted on the event loop thread serving the hub.
    """

    def __init__(self, directory: SessionDirectory, config: t.Optional[HubConfig] = None) -> None:
        self._directory = directory
        self._config = config or HubConfig()
        self._connections: t.Dict[str, ObserverConnection] = {}
        self._ids = itertools.count(1)
        directory.add_listener(SIGNAL_EVENT, self._on_event)
        directory.add_listener(SIGNAL_SESSION_CREATED, self._on_session_created)
        directory.add_listener(SIGNAL_SESSION_CLOSED, self._on_session_closed)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def routes(self) -> t.List[WebSocketRoute]:
        return [WebSocketRoute(self._config.ws_path, self.endpoint)]

    def connect(self) -> t.Tuple[ObserverConnection, MemoryObjectReceiveStream]:
        send_stream, receive_stream = anyio.create_memory_object_stream(self._config.max_queued_messages)
        connection = ObserverConnection(f"observer-{next(self._ids)}", send_stream)
        self._connections[connection.id] = connection
        _logger.debug("BroadcastHub: connected %s (total=%d)", connection.id, len(self._connections))
        return connection, receive_stream

    def disconnect(self, connection: ObserverConnection) -> None:
        if self._connections.pop(connection.id, None) is not None:
            _logger.debug("BroadcastHub: disconnected %s (total=%d)", connection.id, len(self._connections))
        connection.close()

    def close(self) -> None:
        """Detach from the directory and close every connection."""
        self._directory.remove_listener(SIGNAL_EVENT, self._on_event)
        self._directory.remove_listener(SIGNAL_SESSION_CREATED, self._on_session_created)
        self._directory.remove_listener(SIGNAL_SESSION_CLOSED, self._on_session_closed)
        for connection in list(self._connections.values()):
            self.disconnect(connection)

    async def endpoint(self, websocket: WebSocket) -> None:
        await websocket.accept()
        connection, receive_stream = self.connect()
        try:
            async with anyio.create_task_group() as tg:
                tg.start_soon(self._writer, websocket, connection, receive_stream)
                try:
                    while True:
                        message = await websocket.receive()
                        if message["type"] == "websocket.disconnect":
                            break
                        raw = message.get("text")
                        if raw is None:
                            raw = message.get("bytes") or b""
                        self.handle_message(connection, raw)
                except WebSocketDisconnect:
                    pass
                finally:
                    tg.cancel_scope.cancel()
        finally:
            self.disconnect(connection)

    async def _writer(
        self, websocket: WebSocket, connection: ObserverConnection, receive_stream: MemoryObjectReceiveStream
    ) -> None:
        async with receive_stream:
            async for message in receive_stream:
                try:
                    await websocket.send_text(json.dumps(message, default=str))
                except Exception:
                    _logger.debug("BroadcastHub: send to %s failed; closing", connection.id, exc_info=True)
                    connection.closed = True
                    return

    def handle_message(self, connection: ObserverConnection, raw: t.Union[str, bytes]) -> None:
        """Apply one observer message; invalid ones get an ``error`` reply."""
        try:
            msg = parse_client_message(raw)
            msg_type = msg["type"]
            if msg_type == "subscribe":
                connection.subscriptions.add(msg["sessionId"])
            elif msg_type == "unsubscribe":
                connection.subscriptions.discard(msg["sessionId"])
            elif msg_type == "backfill":
                since = _optional_number(msg, "since")
                limit = t.cast(t.Optional[int], _optional_number(msg, "limit", minimum=0, integer=True))
                events = self.backfill(msg["sessionId"], since, limit)
                connection.send({"type": "backfill", "sessionId": msg["sessionId"], "events": events})
            else:
                connection.send({"type": "sessions", "sessions": self.list_sessions()})
        except InvalidClientMessage as exc:
            _logger.debug("BroadcastHub: invalid message from %s: %s", connection.id, exc)
            connection.send({"type": "error", "message": str(exc)})

    def backfill(
        self, session_id: str, since: t.Optional[float] = None, limit: t.Optional[int] = None
    ) -> t.List[JSON]:
        bus = self._directory.get_bus(session_id)
        if bus is None:
            return []
        return [event.to_dict() for event in bus.get_events(since=since, limit=limit)]

    def list_sessions(self) -> t.List[JSON]:
        return [summary.to_dict() for summary in self._directory.get_session_summaries()]

    def _on_event(self, session_id: str, event: Event) -> None:
        message = {"type": "event", "sessionId": session_id, "event": event.to_dict()}
        for connection in list(self._connections.values()):
            if session_id in connection.subscriptions or self._config.wildcard in connection.subscriptions:
                connection.send(message)

    def _broadcast_lifecycle(self, message: JSON) -> None:
        for connection in list(self._connections.values()):
            if self._config.wildcard in connection.subscriptions:
                connection.send(message)

    def _on_session_created(self, session_id: str, metadata: SessionMetadata) -> None:
        self._broadcast_lifecycle({"type": "session_created", "session": _session_payload(session_id, metadata)})

    def _on_session_closed(self, session_id: str) -> None:
        self._broadcast_lifecycle({"type": "session_closed", "sessionId": session_id})
