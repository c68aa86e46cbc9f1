"""Shared fixtures and mocks for unit tests."""

from __future__ import annotations

import json
import typing as t
from unittest.mock import AsyncMock

import pytest

from mcp_tap.core.directory import SessionDirectory
from mcp_tap.core.event_store import EventStore


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int = 1) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def clock():
    """Controllable clock for deterministic timestamps."""
    return FakeClock()


@pytest.fixture
def bus(clock):
    """An event store for a single session."""
    return EventStore("test-session-123", max_events=1000, clock=clock)


@pytest.fixture
def directory(clock):
    """A session directory with a controllable clock."""
    return SessionDirectory(max_events_per_session=1000, clock=clock)


@pytest.fixture
def request_event():
    """Wire-shaped request event input."""
    return {"type": "request", "id": 1, "method": "tools/call", "params": {"name": "echo"}}


@pytest.fixture
def mock_task_store():
    """Mock task store."""
    store = AsyncMock()
    store.create_task = AsyncMock(return_value={"taskId": "task-1", "status": "working"})
    store.get_task = AsyncMock(return_value={"taskId": "task-1", "status": "working"})
    store.update_task_status = AsyncMock(return_value=None)
    store.store_task_result = AsyncMock(return_value=None)
    store.get_task_result = AsyncMock(return_value={"content": []})
    store.list_tasks = AsyncMock(return_value={"tasks": []})
    return store


@pytest.fixture
def tool_call_request():
    """A tools/call request as it reaches the task store."""
    return {
        "method": "tools/call",
        "params": {"name": "long-running", "arguments": {"seconds": 5}},
    }


@pytest.fixture
def http_scope():
    """Create a sample HTTP scope."""
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "POST",
        "scheme": "http",
        "path": "/mcp",
        "query_string": b"",
        "root_path": "",
        "headers": [
            (b"content-type", b"application/json"),
            (b"mcp-session-id", b"test-session-123"),
        ],
        "server": ("127.0.0.1", 8000),
        "client": ("127.0.0.1", 12345),
        "state": {},
    }


def make_receive(body: bytes, chunk_size: t.Optional[int] = None):
    """ASGI receive callable that yields `body`, optionally in chunks."""
    if chunk_size is None:
        chunks = [body]
    else:
        chunks = [body[i : i + chunk_size] for i in range(0, len(body), chunk_size)] or [b""]
    index = 0

    async def receive():
        nonlocal index
        if index < len(chunks):
            msg = {"type": "http.request", "body": chunks[index], "more_body": index < len(chunks) - 1}
            index += 1
            return msg
        return {"type": "http.disconnect"}

    return receive


def make_app(headers: t.List[t.Tuple[bytes, bytes]], chunks: t.List[bytes], status: int = 200):
    """Inner ASGI app that drains the request and writes `chunks` as the response."""
    received: t.List[bytes] = []

    async def app(scope, receive, send):
        message = await receive()
        received.append(message.get("body", b""))
        await send({"type": "http.response.start", "status": status, "headers": headers})
        for i, chunk in enumerate(chunks):
            await send({"type": "http.response.body", "body": chunk, "more_body": i < len(chunks) - 1})

    app.received = received  # type: ignore[attr-defined]
    return app


def sse_frame(message: dict) -> bytes:
    return f"event: message\ndata: {json.dumps(message)}\n\n".encode()


@pytest.fixture
def sse_chunks():
    """Two notification frames then a response frame, split mid-frame."""
    body = (
        sse_frame({"jsonrpc": "2.0", "method": "notifications/progress", "params": {"progress": 1}})
        + sse_frame({"jsonrpc": "2.0", "method": "notifications/message", "params": {"data": "hi"}})
        + sse_frame({"jsonrpc": "2.0", "id": 7, "result": {"content": []}})
    )
    return [body[:30], body[30:95], body[95:140], body[140:]]


@pytest.fixture
def receive_factory():
    """Factory for ASGI receive callables."""
    return make_receive


@pytest.fixture
def app_factory():
    """Factory for inner ASGI apps with a scripted response."""
    return make_app
