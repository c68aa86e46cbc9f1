#!/usr/bin/env python3

import contextlib
import logging
from collections.abc import AsyncIterator

import anyio
import click
import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from starlette.applications import Starlette
from starlette.types import Receive, Scope, Send

from mcp_tap import ObservabilityConfig, create_observability_app

logger = logging.getLogger(__name__)


@click.command()
@click.option("--port", default=3000, help="Port to listen on for HTTP")
@click.option(
    "--log-level",
    default="INFO",
    help="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
)
@click.option(
    "--json-response",
    is_flag=True,
    default=False,
    help="Enable JSON responses instead of SSE streams",
)
@click.option("--max-events", default=1000, help="Events kept per session")
def main(port: int, log_level: str, json_response: bool, max_events: int) -> int:
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = Server("mcp-streamable-http-with-tap")

    @app.call_tool()
    async def call_tool(name: str, arguments: dict) -> list[types.ContentBlock]:
        interval = arguments.get("interval", 1.0)
        count = arguments.get("count", 3)
        caller = arguments.get("caller", "unknown")

        for i in range(count):
            await app.request_context.session.send_log_message(
                level="info",
                data=f"[{i + 1}/{count}] Event from '{caller}'",
                logger="notification_stream",
                related_request_id=app.request_context.request_id,
            )
            if i < count - 1:
                await anyio.sleep(interval)

        return [
            types.TextContent(
                type="text",
                text=f"Sent {count} notifications with {interval}s interval for caller: {caller}",
            )
        ]

    @app.list_tools()
    async def list_tools() -> list[types.Tool]:
        return [
            types.Tool(
                name="start-notification-stream",
                description="Sends a stream of notifications with configurable count and interval",
                inputSchema={
                    "type": "object",
                    "required": ["interval", "count", "caller"],
                    "properties": {
                        "interval": {"type": "number", "description": "Interval between notifications in seconds"},
                        "count": {"type": "number", "description": "Number of notifications to send"},
                        "caller": {"type": "string", "description": "Identifier of the caller"},
                    },
                },
            ),
        ]

    session_manager = StreamableHTTPSessionManager(app=app, json_response=json_response)

    async def handle_streamable_http(scope: Scope, receive: Receive, send: Send) -> None:
        await session_manager.handle_request(scope, receive, send)

    @contextlib.asynccontextmanager
    async def lifespan(starlette_app: Starlette) -> AsyncIterator[None]:
        async with session_manager.run():
            logger.info("Application started; observers can connect to ws://127.0.0.1:%d/events", port)
            try:
                yield
            finally:
                logger.info("Application shutting down...")

    config = ObservabilityConfig.from_dict({"store": {"max_events_per_session": max_events}})
    starlette_app = create_observability_app(handle_streamable_http, config=config, lifespan=lifespan)

    import uvicorn

    uvicorn.run(starlette_app, host="127.0.0.1", port=port)
    return 0


if __name__ == "__main__":
    main()
