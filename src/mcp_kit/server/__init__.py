"""
MCP server module.

``BaseMCPServer`` handles the protocol; ``StdioTransport`` and
``create_http_app`` connect it to clients.
"""

from .base import BaseMCPServer, ServerState, SUPPORTED_PROTOCOL_VERSIONS, LATEST_PROTOCOL_VERSION
from .registry import ToolRegistry, ResourceRegistry, PromptRegistry
from .stdio import StdioTransport, run_stdio
from .http import create_http_app, run_http

__all__ = [
    "BaseMCPServer",
    "ServerState",
    "SUPPORTED_PROTOCOL_VERSIONS",
    "LATEST_PROTOCOL_VERSION",
    "ToolRegistry",
    "ResourceRegistry",
    "PromptRegistry",
    "StdioTransport",
    "run_stdio",
    "create_http_app",
    "run_http",
]
