"""
Bearer authentication middleware for the HTTP transport.

Rejected requests get an HTTP error status with a JSON-RPC error body, so
MCP clients can surface the failure like any other protocol error.
"""

import logging
from typing import Callable, Optional

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from mcp_kit.protocol.exceptions import UNAUTHORIZED
from .models import AuthConfig
from .token_validator import TokenValidator
from .exceptions import (
    AuthenticationError,
    AuthServerConnectionError,
    InsufficientScopeError,
    TokenValidationError,
)

logger = logging.getLogger(__name__)


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """
    Validate ``Authorization: Bearer`` tokens on every non-public path.

    On success ``request.state`` carries ``user_id``, ``claims`` and
    ``access_token`` for downstream handlers and the rate limiter.
    """

    def __init__(self, app, auth_config: AuthConfig, validator: Optional[TokenValidator] = None):
        super().__init__(app)
        self.auth_config = auth_config
        self.token_validator = validator or TokenValidator(auth_config)
        self.public_paths = set(auth_config.public_paths)

        logger.info(
            "Bearer authentication middleware initialized",
            extra={"public_paths": sorted(self.public_paths)}
        )

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.public_paths or request.method == "OPTIONS":
            return await call_next(request)

        token = self._extract_bearer_token(request)
        if not token:
            return self._error_response("Missing or invalid Authorization header",
                                        status.HTTP_401_UNAUTHORIZED, "invalid_request")

        try:
            claims = await self.token_validator.validate_token(token)
        except InsufficientScopeError as e:
            logger.warning("Token lacks required scopes", extra={"path": request.url.path})
            return self._error_response(str(e), status.HTTP_403_FORBIDDEN, "insufficient_scope")
        except TokenValidationError as e:
            logger.warning(
                "Token validation failed",
                extra={
                    "error": str(e),
                    "path": request.url.path,
                    "remote_addr": request.client.host if request.client else None
                }
            )
            return self._error_response("Invalid or expired token",
                                        status.HTTP_401_UNAUTHORIZED, "invalid_token")
        except AuthServerConnectionError as e:
            logger.error("Key source unavailable during authentication", extra={"error": str(e)})
            return self._error_response("Authentication service temporarily unavailable",
                                        status.HTTP_503_SERVICE_UNAVAILABLE)
        except AuthenticationError as e:
            return self._error_response(str(e), status.HTTP_401_UNAUTHORIZED, e.error_code)

        request.state.user_id = claims.sub
        request.state.claims = claims
        request.state.access_token = token
        return await call_next(request)

    @staticmethod
    def _extract_bearer_token(request: Request) -> Optional[str]:
        auth_header = request.headers.get("Authorization")
        if not auth_header:
            return None
        parts = auth_header.split(" ")
        if len(parts) != 2 or parts[0].lower() != "bearer":
            return None
        token = parts[1].strip()
        return token or None

    @staticmethod
    def _error_response(message: str, status_code: int, oauth_error: Optional[str] = None) -> JSONResponse:
        challenge = "Bearer"
        if oauth_error:
            challenge = f'Bearer error="{oauth_error}"'
        return JSONResponse(
            status_code=status_code,
            content={
                "jsonrpc": "2.0",
                "id": None,
                "error": {"code": UNAUTHORIZED, "message": message},
            },
            headers={"WWW-Authenticate": challenge},
        )

