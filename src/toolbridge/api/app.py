"""
HTTP API for toolbridge.

Exposes the session transport over HTTP:
- **POST /mcp**    - JSON-RPC requests; an ``initialize`` request without a session header opens a
  session whose id is returned in the ``Mcp-Session-Id`` response header.
- **GET /mcp**     - pull queued server-to-client messages (JSON array, or SSE with
  ``Accept: text/event-stream``).
- **DELETE /mcp**  - close the session.
- **GET /health**  - liveness probe for health checks.
"""

import asyncio
import contextlib
import logging
from typing import (
    AsyncIterator,
    Optional,
)

from fastapi import (
    FastAPI,
    Request,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import (
    JSONResponse,
    Response,
    StreamingResponse,
)

from toolbridge.common import (
    AnsiColors,
    colored_print,
)
from toolbridge.config import settings
from toolbridge.server.router import (
    SESSION_HEADER,
    RequestRouter,
    RouteResult,
)
from toolbridge.server.session_table import SessionTable
from toolbridge.tools import ToolRegistry
from toolbridge.tools.builtin import (
    ToolServices,
    build_default_registry,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------
def _to_response(result: RouteResult) -> Response:
    if result.stream is not None:
        return StreamingResponse(
            result.stream,
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", **result.headers},
        )
    if result.body is None:
        return Response(status_code=result.status_code, headers=result.headers)
    return JSONResponse(result.body, status_code=result.status_code, headers=result.headers)


def create_app(
    registry: Optional[ToolRegistry] = None,
    table: Optional[SessionTable] = None,
    reap_interval: Optional[float] = None,
    services: Optional[ToolServices] = None,
) -> FastAPI:
    """
    Build the FastAPI application around a tool registry and a session table.

    *services* are closed on shutdown; when no *registry* is given one is built over them.
    """
    if registry is None:
        services = services or ToolServices()
        registry = build_default_registry(services)
    table = table or SessionTable()
    router = RequestRouter(table, registry)
    interval = settings.SESSION_REAP_INTERVAL if reap_interval is None else reap_interval

    @contextlib.asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        reaper: Optional[asyncio.Task] = None
        if table.idle_timeout > 0 and interval > 0:
            reaper = asyncio.create_task(table.run_reaper(interval))
        logger.info("Serving %d tools", len(registry))
        try:
            yield
        finally:
            if reaper is not None:
                reaper.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await reaper
            await table.close_all()
            if services is not None:
                await services.aclose()

    app = FastAPI(
        title="toolbridge",
        version="0.1.0",
        description="Session-oriented tool server",
        lifespan=lifespan,
    )
    app.state.router = router
    app.state.table = table
    app.state.registry = registry

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type", SESSION_HEADER],
        expose_headers=[SESSION_HEADER],
    )

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------
    @app.get("/health", summary="Health check")
    async def health() -> dict:
        """Return a simple liveness payload."""
        return {"status": "ok", "sessions": table.count}

    @app.post("/mcp", summary="Send JSON-RPC messages")
    async def post_mcp(request: Request) -> Response:
        session_id = request.headers.get(SESSION_HEADER)
        logger.debug("Received MCP request (session=%s)", session_id)
        result = await router.route_post(session_id, await request.body())
        return _to_response(result)

    @app.get("/mcp", summary="Pull queued server messages")
    async def get_mcp(request: Request) -> Response:
        result = await router.route_get(
            request.headers.get(SESSION_HEADER), request.headers.get("accept", "")
        )
        return _to_response(result)

    @app.delete("/mcp", summary="Close a session")
    async def delete_mcp(request: Request) -> Response:
        result = await router.route_delete(request.headers.get(SESSION_HEADER))
        return _to_response(result)

    return app


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 3001, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting the application.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful in development).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn an optional dependency at pkg-import time
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:  # Use the default from settings if not provided
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting toolbridge API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )
    colored_print(f"Server is running on http://localhost:{port}", AnsiColors.GREEN)
    uvicorn.run(
        "toolbridge.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m toolbridge.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
