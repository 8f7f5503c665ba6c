"""HTTP transport: JSON-RPC over POST, served by FastAPI."""

import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse

from mcp_kit.core.config import Settings
from mcp_kit.protocol.exceptions import INTERNAL_ERROR
from mcp_kit.rl import RateLimitMiddleware, create_rate_limiter, get_rate_limit_config
from mcp_kit.auth.middleware import BearerAuthMiddleware
from .base import BaseMCPServer

logger = logging.getLogger(__name__)

SESSION_HEADER = "Mcp-Session-Id"


def _is_initialize(body: bytes) -> bool:
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return False
    return isinstance(payload, dict) and payload.get("method") == "initialize"


def create_http_app(server: BaseMCPServer, settings: Optional[Settings] = None) -> FastAPI:
    """
    Create a FastAPI application serving ``server``.

    Args:
        server: The MCP server handling JSON-RPC messages
        settings: Settings to read transport, auth and rate limit options from

    Returns:
        FastAPI application with the MCP endpoint and /health
    """
    settings = settings or server.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await server.startup()
        logger.info(
            "HTTP transport ready",
            extra={
                "server": server.name,
                "path": settings.MCP_PATH,
                "auth_enabled": settings.ENABLE_AUTH,
                "rate_limiting_enabled": settings.ENABLE_RATE_LIMITING
            }
        )
        yield
        await server.shutdown()

    app = FastAPI(
        title=server.name,
        version=server.version,
        description="Model Context Protocol server",
        lifespan=lifespan,
    )

    # Rate limiting runs inside authentication so it can key on the subject
    limiter = create_rate_limiter(get_rate_limit_config(settings))
    app.add_middleware(
        RateLimitMiddleware,
        limiter=limiter,
        server_name=server.name,
        apply_to_paths=(settings.MCP_PATH,)
    )

    auth_config = settings.get_auth_config()
    if auth_config:
        app.add_middleware(BearerAuthMiddleware, auth_config=auth_config)
    else:
        logger.warning("Authentication is disabled for the HTTP transport")

    app.add_exception_handler(Exception, general_exception_handler)

    @app.post(settings.MCP_PATH)
    async def handle_mcp(request: Request) -> Response:
        """Accept one JSON-RPC message or a batch."""
        body = await request.body()
        response_text = await server.handle_message(body, session=request.headers.get(SESSION_HEADER))

        if response_text is None:
            return Response(status_code=status.HTTP_202_ACCEPTED)

        headers = {}
        if server.session_id and _is_initialize(body):
            headers[SESSION_HEADER] = server.session_id
        return Response(content=response_text, media_type="application/json", headers=headers)

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "server": server.name,
            "version": server.version,
            "state": server.state.value,
            "tools": len(server.tools),
        }

    return app


async def general_exception_handler(request: Request, exc: Exception):
    """Unhandled errors still answer in JSON-RPC shape"""
    logger.error(
        "Unhandled exception",
        extra={
            "url": str(request.url),
            "method": request.method,
            "error": str(exc)
        },
        exc_info=True
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "jsonrpc": "2.0",
            "id": None,
            "error": {"code": INTERNAL_ERROR, "message": "Internal server error occurred"},
        },
    )


def run_http(server: BaseMCPServer, settings: Optional[Settings] = None) -> None:
    """Serve ``server`` with uvicorn."""
    settings = settings or server.settings
    app = create_http_app(server, settings)
    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        log_config=None,
        access_log=True,
        server_header=False,
        date_header=True,
    )
