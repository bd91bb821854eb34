"""Starlette application serving the terminal gateway.

Routes:
- ``/terminal``       websocket, one shell per connection
- ``/api/config``     websocket endpoint discovery for clients
- ``/api/terminals``  the caller's live sessions
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from starlette.applications import Starlette
from starlette.authentication import requires
from starlette.middleware import Middleware
from starlette.middleware.authentication import AuthenticationMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket

from termgate.auth import TokenAuthBackend, user_id
from termgate.config import TermgateConfig
from termgate.gateway import TerminalConnection
from termgate.projects import DirectoryProjectResolver, ProjectResolver
from termgate.pty.manager import SessionManager

logger = logging.getLogger(__name__)


async def terminal_websocket_endpoint(websocket: WebSocket) -> None:
    """Websocket endpoint for terminal sessions.

    Query parameters:
        project  (required) project identifier to open the shell in
        token    credential checked by the authentication middleware
    """
    state = websocket.app.state
    connection = TerminalConnection(
        websocket,
        manager=state.session_manager,
        resolver=state.project_resolver,
    )
    await connection.run()


@requires("authenticated")
async def get_config(request: Request) -> JSONResponse:
    """GET /api/config — where clients should open the terminal websocket."""
    config: TermgateConfig = request.app.state.config
    ws_url = config.server.public_ws_url
    if not ws_url:
        scheme = "wss" if request.url.scheme == "https" else "ws"
        ws_url = f"{scheme}://{request.url.netloc}"
    return JSONResponse({"wsUrl": ws_url})


@requires("authenticated")
async def list_terminals(request: Request) -> JSONResponse:
    """GET /api/terminals — live sessions owned by the caller."""
    manager: SessionManager = request.app.state.session_manager
    user = user_id(request)
    sessions = [s for s in manager.list_sessions() if s["user"] == user]
    return JSONResponse({"terminals": sessions})


def create_app(
    config: TermgateConfig | None = None,
    resolver: ProjectResolver | None = None,
    manager: SessionManager | None = None,
) -> Starlette:
    """Build the gateway app.

    The session manager lives for the app's lifespan; every shell still
    running at shutdown is killed.
    """
    config = config or TermgateConfig()
    resolver = resolver or DirectoryProjectResolver(config.server.projects_root)
    manager = manager or SessionManager(shell=config.server.shell)

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        logger.info("Terminal gateway starting (shell=%s)", manager.shell)
        try:
            yield
        finally:
            await manager.cleanup()

    app = Starlette(
        routes=[
            WebSocketRoute("/terminal", terminal_websocket_endpoint),
            Route("/api/config", get_config, methods=["GET"]),
            Route("/api/terminals", list_terminals, methods=["GET"]),
        ],
        middleware=[
            Middleware(
                AuthenticationMiddleware,
                backend=TokenAuthBackend(
                    config.server.tokens,
                    anonymous_user=config.server.anonymous_user,
                ),
            )
        ],
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.project_resolver = resolver
    app.state.session_manager = manager
    return app
