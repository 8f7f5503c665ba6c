"""Rate limiting middleware for the HTTP transport."""

import json
import logging
from typing import Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from mcp_kit.protocol.exceptions import RATE_LIMITED
from .limiter import RateLimiter
from .keys import build_rl_key

logger = logging.getLogger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce rate limits on JSON-RPC endpoints."""

    def __init__(
        self,
        app,
        limiter: Optional[RateLimiter] = None,
        server_name: str = "mcp",
        apply_to_paths: Tuple[str, ...] = ("/mcp",)
    ):
        """Initialize rate limiting middleware."""
        super().__init__(app)
        self.limiter = limiter
        self.server_name = server_name
        self.apply_to_paths = apply_to_paths

        # If no limiter provided, rate limiting is effectively disabled
        if self.limiter is None:
            logger.info("Rate limiting middleware initialized but disabled (no limiter provided)")
        else:
            logger.info(
                "Rate limiting middleware initialized",
                extra={
                    "apply_to_paths": self.apply_to_paths,
                    "policy_limit": self.limiter.policy.limit,
                    "policy_window": self.limiter.policy.window_seconds
                }
            )

    async def dispatch(self, request: Request, call_next):
        """Apply rate limiting to matching requests."""
        if self.limiter is None or request.method != "POST":
            return await call_next(request)

        request_path = request.url.path
        if not any(request_path.startswith(path) for path in self.apply_to_paths):
            return await call_next(request)

        client_id = self._client_id(request)
        body = await request.body()
        request_id, method = self._extract_call(body)

        key = build_rl_key(client_id=client_id, server=self.server_name, method=method)
        allowed, retry_after = self.limiter.check_and_consume(key)

        if not allowed:
            logger.warning(
                "Rate limit exceeded",
                extra={
                    "client_id": client_id,
                    "method": method,
                    "retry_after": retry_after,
                    "path": request_path,
                    "rate_limit_key": key
                }
            )
            return JSONResponse(
                status_code=429,
                content={
                    "jsonrpc": "2.0",
                    "id": request_id,
                    "error": {
                        "code": RATE_LIMITED,
                        "message": "Rate limit exceeded",
                        "data": {"retry_after": retry_after},
                    },
                },
                headers={"Retry-After": str(retry_after)}
            )

        return await call_next(request)

    @staticmethod
    def _client_id(request: Request) -> str:
        """Authenticated subject first, then X-Client-Id, then the peer address."""
        user_id = getattr(request.state, "user_id", None)
        if user_id:
            return str(user_id)
        header = request.headers.get("X-Client-Id")
        if header:
            return header
        if request.client:
            return request.client.host
        return "anonymous"

    @staticmethod
    def _extract_call(body: bytes) -> Tuple[Optional[object], str]:
        """
        Return (request id, rate limit scope) from a JSON-RPC body.

        tools/call is scoped per tool; batches and unreadable bodies share
        one scope each.
        """
        if not body:
            return None, "empty"
        try:
            data = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None, "unparseable"

        if isinstance(data, list):
            return None, "batch"
        if not isinstance(data, dict):
            return None, "invalid"

        request_id = data.get("id")
        method = data.get("method")
        if not isinstance(method, str):
            return request_id, "invalid"
        if method == "tools/call":
            params = data.get("params")
            name = params.get("name") if isinstance(params, dict) else None
            if isinstance(name, str) and name:
                return request_id, f"tools/call:{name}"
        return request_id, method
