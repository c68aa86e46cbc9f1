from __future__ import annotations

import contextlib
import typing as t

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import BaseRoute, Mount, Route

from mcp_tap.api import create_read_routes
from mcp_tap.core.asgi_wrapper import ASGIApp, ASGITapWrapper
from mcp_tap.core.directory import SessionDirectory
from mcp_tap.realtime.hub import BroadcastHub
from mcp_tap.utils.config import ObservabilityConfig

Lifespan = t.Callable[[Starlette], t.AsyncContextManager[None]]


async def health(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


def create_observability_app(
    mcp_app: ASGIApp,
    directory: t.Optional[SessionDirectory] = None,
    config: t.Optional[ObservabilityConfig] = None,
    *,
    lifespan: t.Optional[Lifespan] = None,
) -> Starlette:
    """Serve an MCP ASGI app with traffic capture, the read API and the hub.

    The directory, hub and config are exposed on ``app.state``. The hub is
    closed when the application shuts down.
    """
    config = config or ObservabilityConfig()
    directory = directory or SessionDirectory(max_events_per_session=config.store.max_events_per_session)
    hub = BroadcastHub(directory, config.hub)
    tapped = ASGITapWrapper(directory, config.tap).wrap(mcp_app)

    routes: t.List[BaseRoute] = [Route("/health", health, methods=["GET"])]
    if config.api.enabled:
        routes.extend(create_read_routes(directory, config.api))
    routes.extend(hub.routes())
    routes.append(Mount(config.api.mcp_path, app=tapped))

    @contextlib.asynccontextmanager
    async def app_lifespan(app: Starlette) -> t.AsyncIterator[None]:
        try:
            if lifespan is None:
                yield
            else:
                async with lifespan(app):
                    yield
        finally:
            hub.close()

    app = Starlette(routes=routes, lifespan=app_lifespan)
    app.state.directory = directory
    app.state.hub = hub
    app.state.config = config
    return app
