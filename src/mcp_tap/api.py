from __future__ import annotations

import typing as t

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from mcp_tap.core.directory import SessionDirectory
from mcp_tap.utils.config import ApiConfig


def _int_param(request: Request, name: str) -> t.Optional[int]:
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return None
    return int(raw)


def create_read_routes(directory: SessionDirectory, config: t.Optional[ApiConfig] = None) -> t.List[Route]:
    """HTTP routes for listing sessions and reading a session's buffered events."""
    config = config or ApiConfig()
    prefix = config.prefix.rstrip("/")

    async def list_sessions(request: Request) -> JSONResponse:
        return JSONResponse({"sessions": [s.to_dict() for s in directory.get_session_summaries()]})

    async def session_events(request: Request) -> JSONResponse:
        session_id = request.path_params["session_id"]
        bus = directory.get_bus(session_id)
        if bus is None:
            return JSONResponse({"error": "Session not found"}, status_code=404)
        try:
            since = _int_param(request, "since")
            limit = _int_param(request, "limit")
        except ValueError:
            return JSONResponse({"error": "since and limit must be integers"}, status_code=400)
        if limit is not None and limit < 0:
            return JSONResponse({"error": "limit must not be negative"}, status_code=400)
        return JSONResponse(
            {
                "sessionId": session_id,
                "events": [e.to_dict() for e in bus.get_events(since=since, limit=limit)],
                "eventCount": bus.event_count,
            }
        )

    return [
        Route(f"{prefix}/sessions", list_sessions, methods=["GET"]),
        Route(f"{prefix}/sessions/{{session_id}}", session_events, methods=["GET"]),
    ]
