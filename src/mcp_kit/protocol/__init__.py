"""
JSON-RPC 2.0 protocol layer for MCP Kit.

Message models, the wire codec and the MCP error taxonomy.
"""

from .codec import encode_message, error_response, parse_message, success_response
from .messages import (
    ErrorObject,
    JSONRPCErrorResponse,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
)
from .exceptions import (
    MCPError,
    ParseError,
    InvalidRequestError,
    MethodNotFoundError,
    InvalidParamsError,
    InternalError,
    ToolNotFoundError,
    PromptNotFoundError,
    ResourceNotFoundError,
    UnauthorizedError,
    RateLimitedError,
    UpstreamError,
)

__all__ = [
    "encode_message",
    "error_response",
    "parse_message",
    "success_response",
    "ErrorObject",
    "JSONRPCErrorResponse",
    "JSONRPCNotification",
    "JSONRPCRequest",
    "JSONRPCResponse",
    "MCPError",
    "ParseError",
    "InvalidRequestError",
    "MethodNotFoundError",
    "InvalidParamsError",
    "InternalError",
    "ToolNotFoundError",
    "PromptNotFoundError",
    "ResourceNotFoundError",
    "UnauthorizedError",
    "RateLimitedError",
    "UpstreamError",
]
