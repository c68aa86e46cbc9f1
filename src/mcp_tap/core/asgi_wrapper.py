from __future__ import annotations

import codecs
import json
import logging
import typing as t
from datetime import datetime, timezone

from mcp_tap.monitoring import metrics
from mcp_tap.utils.config import TapConfig

from .directory import SessionDirectory
from .interceptor import classify_incoming, classify_outgoing, emit_safely, iter_messages
from .models import JSON, ClientInfo, SessionMetadata

Scope = t.Dict[str, t.Any]
Receive = t.Callable[[], t.Awaitable[t.Dict[str, t.Any]]]
Send = t.Callable[[t.Dict[str, t.Any]], t.Awaitable[None]]
ASGIApp = t.Callable[[Scope, Receive, Send], t.Awaitable[None]]

_logger = logging.getLogger(__name__)


class SSEFrameParser:
    """Incremental parser for `data:` payloads of a Server-Sent-Events body.

    Each `feed` returns the JSON payloads of the lines completed by that
    chunk. A partial trailing line is held until the next chunk, or parsed
    when `final` is set. Lines that are not valid JSON are skipped.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes, final: bool = False) -> t.List[t.Any]:
        text = self._pending + self._decoder.decode(chunk, final=final)
        lines = text.split("\n")
        self._pending = "" if final else lines.pop()
        payloads: t.List[t.Any] = []
        for line in lines:
            line = line.rstrip("\r")
            if not line.startswith("data:"):
                continue
            data = line[5:]
            if data.startswith(" "):
                data = data[1:]
            if not data.strip():
                continue
            try:
                payloads.append(json.loads(data))
            except ValueError:
                _logger.debug("SSEFrameParser: skipping non-JSON data line len=%d", len(data))
        return payloads


def _header_map(raw_headers: t.Iterable[t.Tuple[bytes, bytes]]) -> t.Dict[str, str]:
    headers: t.Dict[str, str] = {}
    for key, value in raw_headers or []:
        headers[key.decode("latin1").lower()] = value.decode("latin1")
    return headers


class ASGITapWrapper:
    """ASGI wrapper that records MCP Streamable HTTP traffic as events.

    Incoming JSON-RPC request bodies become ``request`` events. Outgoing
    responses are observed as they are written: SSE bodies are parsed frame
    by frame at each write, any other body is parsed as JSON once complete.
    Bodies and headers reach the wrapped app and the client unchanged, and a
    failure inside the tap never reaches the ASGI call.

    An ``initialize`` request without a session header has no session yet;
    its event waits until the response headers name the session and is
    flushed once, ahead of the first response frame.

    Usage:
        wrapper = ASGITapWrapper(directory)
        # inner_app must be an ASGI app: (scope, receive, send) -> Awaitable
        asgi_app = wrapper.wrap(inner_app)
    """

    def __init__(self, directory: SessionDirectory, config: t.Optional[TapConfig] = None) -> None:
        self._directory = directory
        self._config = config or TapConfig()
        self._session_header = self._config.session_header.lower()
        self._logger = _logger

    def wrap(self, inner_app: ASGIApp) -> ASGIApp:
        async def app(scope: Scope, receive: Receive, send: Send) -> None:
            if scope.get("type") != "http":
                # Pass through non-HTTP scopes untouched (e.g., lifespan)
                await inner_app(scope, receive, send)
                return

            try:
                headers = _header_map(scope.get("headers", []))
            except Exception:
                headers = {}
            request_sid: t.Optional[str] = headers.get(self._session_header) or None
            response_sid: t.Optional[str] = None
            self._logger.debug(
                "ASGITap: http request method=%s path=%s sid=%s", scope.get("method"), scope.get("path"), request_sid
            )

            def effective_sid() -> str:
                return request_sid or response_sid or self._config.unknown_session_id

            # Buffer the full request body, keeping any non-body message for replay
            body_chunks: t.List[bytes] = []
            held_message: t.Optional[t.Dict[str, t.Any]] = None
            while True:
                message = await receive()
                if message.get("type") != "http.request":
                    held_message = message
                    break
                body_chunks.append(message.get("body", b""))
                if not message.get("more_body", False):
                    break
            original_body = b"".join(body_chunks)

            deferred: t.List[JSON] = []
            if original_body:
                try:
                    deferred = self._capture_request(original_body, request_sid)
                except Exception:
                    metrics.tap_capture_errors_total.inc(tap="http")
                    self._logger.warning("ASGITap: request capture failed", exc_info=True)

            body_replayed = False

            async def wrapped_receive() -> t.Dict[str, t.Any]:
                nonlocal body_replayed, held_message
                if not body_replayed:
                    body_replayed = True
                    return {"type": "http.request", "body": original_body, "more_body": False}
                if held_message is not None:
                    replay, held_message = held_message, None
                    return replay
                return await receive()

            status: int = 200
            is_sse = False
            sse_parser = SSEFrameParser()
            response_chunks: t.List[bytes] = []
            completed = False

            def flush_deferred() -> None:
                nonlocal deferred
                if not deferred:
                    return
                pending, deferred = deferred, []
                try:
                    self._flush_deferred(pending, effective_sid())
                except Exception:
                    metrics.tap_capture_errors_total.inc(tap="http")
                    self._logger.warning("ASGITap: deferred request flush failed", exc_info=True)

            def observe_body(body: bytes, more: bool) -> None:
                nonlocal completed
                flush_deferred()
                if is_sse:
                    for payload in sse_parser.feed(body, final=not more):
                        self._emit_outgoing(payload, effective_sid())
                else:
                    response_chunks.append(body)
                if more:
                    return
                completed = True
                if not is_sse and response_chunks:
                    self._capture_json_response(b"".join(response_chunks), effective_sid())
                if (
                    self._config.close_on_delete
                    and scope.get("method") == "DELETE"
                    and request_sid
                    and status < 400
                ):
                    self._directory.close_session(request_sid)

            async def wrapped_send(message: t.Dict[str, t.Any]) -> None:
                nonlocal status, is_sse, response_sid
                message_type = message.get("type")
                try:
                    if message_type == "http.response.start":
                        status = int(message.get("status", 200))
                        response_headers = _header_map(message.get("headers") or [])
                        is_sse = "text/event-stream" in response_headers.get("content-type", "")
                        response_sid = response_headers.get(self._session_header) or None
                        self._logger.debug(
                            "ASGITap: response.start status=%s sse=%s sid=%s", status, is_sse, effective_sid()
                        )
                    elif message_type == "http.response.body" and not completed:
                        observe_body(message.get("body", b""), bool(message.get("more_body", False)))
                except Exception:
                    metrics.tap_capture_errors_total.inc(tap="http")
                    self._logger.warning("ASGITap: response observation failed", exc_info=True)
                await send(message)

            try:
                await inner_app(scope, wrapped_receive, wrapped_send)
            finally:
                # A request whose response never started still gets recorded
                flush_deferred()

        return app

    def _capture_request(self, body: bytes, session_id: t.Optional[str]) -> t.List[JSON]:
        """Emit request events for a request body; return the deferred ones."""
        try:
            payload = json.loads(body.decode("utf-8"))
        except ValueError:
            self._logger.debug("ASGITap: request body is not JSON bytes=%d", len(body))
            return []
        deferred: t.List[JSON] = []
        for message in iter_messages(payload):
            try:
                event = classify_incoming(message)
            except Exception:
                metrics.tap_capture_errors_total.inc(tap="http")
                self._logger.warning("ASGITap: could not classify request message", exc_info=True)
                continue
            if event is None:
                continue
            if session_id is None and event["method"] in self._config.deferred_methods:
                deferred.append(event)
                continue
            bus = self._directory.get_or_create_bus(session_id or self._config.unknown_session_id)
            emit_safely(bus, event, "http")
        return deferred

    def _flush_deferred(self, events: t.List[JSON], session_id: str) -> None:
        bus = self._directory.get_or_create_bus(session_id)
        for event in events:
            # Observers hear about the session before its first event
            if (
                self._config.record_client_info
                and event["method"] == "initialize"
                and session_id != self._config.unknown_session_id
            ):
                self._directory.set_session_metadata(
                    session_id,
                    SessionMetadata(
                        client_info=ClientInfo.from_params(event.get("params")),
                        created_at=datetime.now(timezone.utc),
                    ),
                )
            emit_safely(bus, event, "http")

    def _emit_outgoing(self, payload: t.Any, session_id: str) -> None:
        for message in iter_messages(payload):
            try:
                event = classify_outgoing(message)
            except Exception:
                metrics.tap_capture_errors_total.inc(tap="http")
                self._logger.warning("ASGITap: could not classify response message", exc_info=True)
                continue
            if event is not None:
                emit_safely(self._directory.get_or_create_bus(session_id), event, "http")

    def _capture_json_response(self, body: bytes, session_id: str) -> None:
        try:
            payload = json.loads(body.decode("utf-8"))
        except ValueError:
            self._logger.debug("ASGITap: response body is not JSON bytes=%d", len(body))
            return
        self._emit_outgoing(payload, session_id)
