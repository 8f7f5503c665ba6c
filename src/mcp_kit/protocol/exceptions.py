"""
MCP protocol exception classes.

Every exception here maps onto a JSON-RPC 2.0 error object, so any handler
can raise one and the dispatcher turns it into a well-formed error response.
"""

from typing import Any, Dict, Optional

from mcp import types

# Standard JSON-RPC 2.0 codes
PARSE_ERROR = types.PARSE_ERROR
INVALID_REQUEST = types.INVALID_REQUEST
METHOD_NOT_FOUND = types.METHOD_NOT_FOUND
INVALID_PARAMS = types.INVALID_PARAMS
INTERNAL_ERROR = types.INTERNAL_ERROR

# Implementation-defined server error range (-32000 to -32099)
UNAUTHORIZED = -32001
RESOURCE_NOT_FOUND = -32002
RATE_LIMITED = -32029
UPSTREAM_ERROR = -32050


class MCPError(Exception):
    """Base exception for errors reported to MCP clients."""

    default_code = INTERNAL_ERROR

    def __init__(self, message: str, code: Optional[int] = None, data: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.code = code if code is not None else self.default_code
        self.data = data

    def to_error_object(self) -> Dict[str, Any]:
        """Render as a JSON-RPC error object."""
        error = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


class ParseError(MCPError):
    """Raised when a message is not valid JSON."""

    default_code = PARSE_ERROR


class InvalidRequestError(MCPError):
    """Raised when a message is JSON but not a valid JSON-RPC request."""

    default_code = INVALID_REQUEST


class MethodNotFoundError(MCPError):
    """Raised when no handler is registered for a method."""

    default_code = METHOD_NOT_FOUND

    def __init__(self, method: str):
        super().__init__(f"Method not found: {method}", data={"method": method})
        self.method = method


class InvalidParamsError(MCPError):
    """Raised when request params fail validation."""

    default_code = INVALID_PARAMS


class InternalError(MCPError):
    """Raised for unexpected server-side failures."""

    default_code = INTERNAL_ERROR


class ToolNotFoundError(InvalidParamsError):
    """Raised when tools/call names an unknown tool."""

    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}", data={"tool": name})
        self.name = name


class PromptNotFoundError(InvalidParamsError):
    """Raised when prompts/get names an unknown prompt."""

    def __init__(self, name: str):
        super().__init__(f"Unknown prompt: {name}", data={"prompt": name})
        self.name = name


class ResourceNotFoundError(MCPError):
    """Raised when resources/read names an unknown URI."""

    default_code = RESOURCE_NOT_FOUND

    def __init__(self, uri: str):
        super().__init__(f"Resource not found: {uri}", data={"uri": uri})
        self.uri = uri


class UnauthorizedError(MCPError):
    """Raised when a caller lacks valid credentials."""

    default_code = UNAUTHORIZED


class RateLimitedError(MCPError):
    """Raised when a caller or an upstream API is over its rate limit."""

    default_code = RATE_LIMITED

    def __init__(self, message: str, retry_after: float = 0):
        super().__init__(message, data={"retry_after": retry_after})
        self.retry_after = retry_after


class UpstreamError(MCPError):
    """Raised when an upstream service answers with a non-success status."""

    default_code = UPSTREAM_ERROR

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        service: Optional[str] = None,
        body: Optional[Any] = None,
        retry_after: Optional[float] = None,
    ):
        data: Dict[str, Any] = {"status_code": status_code, "service": service}
        if body is not None:
            data["body"] = body
        super().__init__(message, data=data)
        self.status_code = status_code
        self.service = service
        self.body = body
        self.retry_after = retry_after
