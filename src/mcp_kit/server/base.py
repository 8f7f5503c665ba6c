"""
Base MCP server.

``BaseMCPServer`` implements the MCP request surface on top of the JSON-RPC
codec: lifecycle (initialize / initialized), discovery and invocation of
tools, resources and prompts, ping, log level control and request
cancellation. Transports feed raw messages into ``handle_message`` and write
back whatever it returns.
"""

import asyncio
import logging
import uuid
from contextvars import ContextVar
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union

from mcp import types

from mcp_kit.core.config import Settings, get_settings
from mcp_kit.protocol.codec import encode_message, error_response, parse_message, success_response
from mcp_kit.protocol.exceptions import (
    InternalError,
    InvalidParamsError,
    InvalidRequestError,
    MCPError,
    MethodNotFoundError,
)
from mcp_kit.protocol.messages import (
    JSONRPCErrorResponse,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
)
from .registry import PromptRegistry, ResourceRegistry, ToolRegistry

logger = logging.getLogger(__name__)

SUPPORTED_PROTOCOL_VERSIONS = ("2024-11-05", "2025-03-26", "2025-06-18")
LATEST_PROTOCOL_VERSION = SUPPORTED_PROTOCOL_VERSIONS[-1]

# MCP log levels (RFC 5424 names) mapped onto stdlib levels
MCP_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "notice": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
    "alert": logging.CRITICAL,
    "emergency": logging.CRITICAL,
}

MethodHandler = Callable[[Dict[str, Any]], Awaitable[Any]]
NotificationHandler = Callable[[Dict[str, Any]], Awaitable[None]]
Response = Union[JSONRPCResponse, JSONRPCErrorResponse]
RequestKey = Tuple[Optional[str], Union[str, int]]

# Session of the message being handled; request ids are only unique within one
_current_session: ContextVar[Optional[str]] = ContextVar("mcp_kit_session", default=None)


class ServerState(Enum):
    """Lifecycle states of a server session."""
    CREATED = "created"
    INITIALIZING = "initializing"
    READY = "ready"
    CLOSED = "closed"


class BaseMCPServer:
    """
    Base class for MCP servers.

    Register capabilities with the ``tool``, ``resource`` and ``prompt``
    decorators, or subclass and call ``register_method`` for custom methods.

    Usage:
        server = BaseMCPServer("weather")

        @server.tool()
        async def forecast(city: str, days: int = 3) -> dict:
            '''Get the forecast for a city.'''
            ...

        response_text = await server.handle_message(raw_line)
    """

    # Methods that run user code; these run as tasks so they can be cancelled
    cancellable_methods = frozenset({"tools/call", "resources/read", "prompts/get"})

    def __init__(
        self,
        name: Optional[str] = None,
        version: Optional[str] = None,
        instructions: Optional[str] = None,
        settings: Optional[Settings] = None,
        max_concurrent_requests: Optional[int] = None,
        request_timeout: Optional[float] = None,
        strict_lifecycle: Optional[bool] = None,
    ):
        self.settings = settings or get_settings()
        self.name = name or self.settings.SERVER_NAME
        self.version = version or self.settings.SERVER_VERSION
        self.instructions = instructions if instructions is not None else self.settings.INSTRUCTIONS
        self.request_timeout = request_timeout or self.settings.REQUEST_TIMEOUT
        self.strict_lifecycle = (
            self.settings.STRICT_LIFECYCLE if strict_lifecycle is None else strict_lifecycle
        )
        self.max_concurrent_requests = max_concurrent_requests or self.settings.MAX_CONCURRENT_REQUESTS

        self.tools = ToolRegistry()
        self.resources = ResourceRegistry()
        self.prompts = PromptRegistry()

        self.state = ServerState.CREATED
        self.session_id: Optional[str] = None
        self.protocol_version: Optional[str] = None
        self.client_info: Optional[Dict[str, Any]] = None
        self.client_capabilities: Dict[str, Any] = {}

        self._semaphore = asyncio.Semaphore(self.max_concurrent_requests)
        self._in_flight: Dict[RequestKey, asyncio.Task] = {}
        self._cancelled: Set[RequestKey] = set()
        self._startup_hooks: List[Callable[[], Awaitable[None]]] = []
        self._shutdown_hooks: List[Callable[[], Awaitable[None]]] = []

        self._methods: Dict[str, MethodHandler] = {
            "initialize": self._handle_initialize,
            "ping": self._handle_ping,
            "tools/list": self._handle_list_tools,
            "tools/call": self._handle_call_tool,
            "resources/list": self._handle_list_resources,
            "resources/templates/list": self._handle_list_resource_templates,
            "resources/read": self._handle_read_resource,
            "prompts/list": self._handle_list_prompts,
            "prompts/get": self._handle_get_prompt,
            "logging/setLevel": self._handle_set_level,
        }
        self._notifications: Dict[str, NotificationHandler] = {
            "notifications/initialized": self._on_initialized,
            "notifications/cancelled": self._on_cancelled,
        }

    # Registration

    def tool(self, name: Optional[str] = None, description: Optional[str] = None):
        """Register the decorated callable as a tool."""
        return self.tools.tool(name=name, description=description)

    def resource(self, uri: str, name: Optional[str] = None, description: Optional[str] = None,
                 mime_type: str = "text/plain"):
        """Register the decorated callable as a resource reader."""
        return self.resources.resource(uri, name=name, description=description, mime_type=mime_type)

    def prompt(self, name: Optional[str] = None, description: Optional[str] = None):
        """Register the decorated callable as a prompt."""
        return self.prompts.prompt(name=name, description=description)

    def register_method(self, method: str, handler: MethodHandler) -> None:
        """Add or replace the handler for a JSON-RPC method."""
        self._methods[method] = handler

    def register_notification(self, method: str, handler: NotificationHandler) -> None:
        self._notifications[method] = handler

    def on_startup(self, func: Callable[[], Awaitable[None]]):
        self._startup_hooks.append(func)
        return func

    def on_shutdown(self, func: Callable[[], Awaitable[None]]):
        self._shutdown_hooks.append(func)
        return func

    # Lifecycle

    async def startup(self) -> None:
        for hook in self._startup_hooks:
            await hook()
        logger.info(
            "MCP server started",
            extra={"server": self.name, "version": self.version, "tools": len(self.tools)}
        )

    async def shutdown(self) -> None:
        """Cancel in-flight requests and run shutdown hooks."""
        for task in list(self._in_flight.values()):
            task.cancel()
        if self._in_flight:
            await asyncio.gather(*self._in_flight.values(), return_exceptions=True)
        self._in_flight.clear()

        for hook in reversed(self._shutdown_hooks):
            try:
                await hook()
            except Exception as e:
                logger.error("Shutdown hook failed", extra={"error": str(e)}, exc_info=True)
        self.state = ServerState.CLOSED
        logger.info("MCP server stopped", extra={"server": self.name})

    async def __aenter__(self):
        await self.startup()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()

    def capabilities(self) -> types.ServerCapabilities:
        return types.ServerCapabilities(
            tools=types.ToolsCapability(listChanged=False),
            resources=types.ResourcesCapability(subscribe=False, listChanged=False),
            prompts=types.PromptsCapability(listChanged=False),
            logging=types.LoggingCapability(),
        )

    # Message handling

    async def handle_message(self, raw: Union[str, bytes], session: Optional[str] = None) -> Optional[str]:
        """
        Handle one raw transport message (single or batch).

        Args:
            raw: The message text as received
            session: Scope for request ids; a cancellation only reaches
                requests sent in the same session

        Returns:
            Encoded response text, or None when nothing should be sent back
        """
        token = _current_session.set(session)
        try:
            try:
                parsed = parse_message(raw)
            except MCPError as e:
                logger.warning("Rejected malformed message", extra={"code": e.code, "error": e.message})
                return encode_message(error_response(getattr(e, "request_id", None), e))

            if isinstance(parsed, list):
                results = await asyncio.gather(*(self._handle_item(item) for item in parsed))
                responses = [r for r in results if r is not None]
                return encode_message(responses) if responses else None

            response = await self._handle_item(parsed)
            return encode_message(response) if response is not None else None
        finally:
            _current_session.reset(token)

    async def _handle_item(self, item) -> Optional[Response]:
        if isinstance(item, InvalidRequestError):
            return error_response(getattr(item, "request_id", None), item)
        if isinstance(item, JSONRPCRequest):
            return await self.handle_request(item)
        if isinstance(item, JSONRPCNotification):
            await self.handle_notification(item)
            return None
        # Responses to server-initiated requests are not used yet
        logger.debug("Ignoring client response message", extra={"message_id": getattr(item, "id", None)})
        return None

    async def handle_request(self, request: JSONRPCRequest) -> Optional[Response]:
        """
        Dispatch a request and build its response.

        Returns None when the client cancelled the request.
        """
        key = (_current_session.get(), request.id)
        try:
            if request.method in self.cancellable_methods:
                existing = self._in_flight.get(key)
                if existing is not None and not existing.done():
                    raise InvalidRequestError(f"Request id {request.id!r} is already in progress")
                task = asyncio.ensure_future(self._dispatch(request))
                self._in_flight[key] = task
                try:
                    result = await task
                finally:
                    if self._in_flight.get(key) is task:
                        del self._in_flight[key]
            else:
                result = await self._dispatch(request)
            return success_response(request.id, result)

        except asyncio.CancelledError:
            if key in self._cancelled:
                self._cancelled.discard(key)
                logger.info(
                    "Request cancelled by client",
                    extra={"request_id": request.id, "method": request.method}
                )
                return None
            raise
        except MCPError as e:
            logger.info(
                "Request failed",
                extra={
                    "request_id": request.id,
                    "method": request.method,
                    "code": e.code,
                    "error": e.message
                }
            )
            return error_response(request.id, e)
        except Exception as e:
            logger.error(
                "Unhandled error while handling request",
                extra={"request_id": request.id, "method": request.method, "error": str(e)},
                exc_info=True
            )
            return error_response(
                request.id,
                InternalError(f"Internal error: {e}", data={"error_type": type(e).__name__}),
            )

    async def _dispatch(self, request: JSONRPCRequest) -> Any:
        method = request.method
        if (
            self.strict_lifecycle
            and self.state == ServerState.CREATED
            and method not in ("initialize", "ping")
        ):
            raise InvalidRequestError("Server not initialized")

        handler = self._methods.get(method)
        if handler is None:
            raise MethodNotFoundError(method)
        return await handler(request.params_dict())

    async def handle_notification(self, notification: JSONRPCNotification) -> None:
        handler = self._notifications.get(notification.method)
        if handler is None:
            logger.debug("Ignoring unknown notification", extra={"method": notification.method})
            return
        try:
            await handler(notification.params_dict())
        except Exception as e:
            # Notifications have no response channel
            logger.error(
                "Notification handler failed",
                extra={"method": notification.method, "error": str(e)},
                exc_info=True
            )

    # Built-in method handlers

    async def _handle_initialize(self, params: Dict[str, Any]) -> types.InitializeResult:
        requested = params.get("protocolVersion")
        if not isinstance(requested, str):
            raise InvalidParamsError("initialize requires a protocolVersion string")

        self.protocol_version = (
            requested if requested in SUPPORTED_PROTOCOL_VERSIONS else LATEST_PROTOCOL_VERSION
        )
        self.client_info = params.get("clientInfo")
        self.client_capabilities = params.get("capabilities") or {}
        self.session_id = uuid.uuid4().hex
        self.state = ServerState.INITIALIZING

        logger.info(
            "Client initializing",
            extra={
                "client": self.client_info,
                "requested_version": requested,
                "negotiated_version": self.protocol_version
            }
        )

        return types.InitializeResult(
            protocolVersion=self.protocol_version,
            capabilities=self.capabilities(),
            serverInfo=types.Implementation(name=self.name, version=self.version),
            instructions=self.instructions,
        )

    async def _on_initialized(self, params: Dict[str, Any]) -> None:
        self.state = ServerState.READY
        logger.debug("Client initialization complete", extra={"session_id": self.session_id})

    async def _on_cancelled(self, params: Dict[str, Any]) -> None:
        request_id = params.get("requestId")
        key = (_current_session.get(), request_id)
        task = self._in_flight.get(key)
        if task is None or task.done():
            logger.debug("Cancellation for unknown or finished request", extra={"request_id": request_id})
            return
        self._cancelled.add(key)
        task.cancel()
        logger.info("Cancelling request", extra={"request_id": request_id, "reason": params.get("reason")})

    async def _handle_ping(self, params: Dict[str, Any]) -> types.EmptyResult:
        return types.EmptyResult()

    async def _handle_list_tools(self, params: Dict[str, Any]) -> types.ListToolsResult:
        return types.ListToolsResult(tools=self.tools.list())

    async def _handle_call_tool(self, params: Dict[str, Any]) -> types.CallToolResult:
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise InvalidParamsError("tools/call requires a tool name")
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise InvalidParamsError("tools/call arguments must be an object")

        # Fail fast before waiting on the semaphore
        self.tools.get(name)

        async with self._semaphore:
            try:
                return await asyncio.wait_for(self.tools.call(name, arguments), self.request_timeout)
            except asyncio.TimeoutError:
                logger.warning("Tool call timed out", extra={"tool": name, "timeout": self.request_timeout})
                raise InternalError(
                    f"Tool {name} timed out after {self.request_timeout}s",
                    data={"tool": name, "timeout": self.request_timeout},
                )

    async def _handle_list_resources(self, params: Dict[str, Any]) -> types.ListResourcesResult:
        return types.ListResourcesResult(resources=self.resources.list())

    async def _handle_list_resource_templates(self, params: Dict[str, Any]) -> types.ListResourceTemplatesResult:
        return types.ListResourceTemplatesResult(resourceTemplates=self.resources.list_templates())

    async def _handle_read_resource(self, params: Dict[str, Any]) -> types.ReadResourceResult:
        uri = params.get("uri")
        if not isinstance(uri, str) or not uri:
            raise InvalidParamsError("resources/read requires a uri")
        return await self.resources.read(uri)

    async def _handle_list_prompts(self, params: Dict[str, Any]) -> types.ListPromptsResult:
        return types.ListPromptsResult(prompts=self.prompts.list())

    async def _handle_get_prompt(self, params: Dict[str, Any]) -> types.GetPromptResult:
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise InvalidParamsError("prompts/get requires a prompt name")
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise InvalidParamsError("prompts/get arguments must be an object")
        return await self.prompts.get(name, {k: str(v) for k, v in arguments.items()})

    async def _handle_set_level(self, params: Dict[str, Any]) -> types.EmptyResult:
        level = params.get("level")
        if level not in MCP_LOG_LEVELS:
            raise InvalidParamsError(
                f"Unknown log level: {level}",
                data={"allowed": sorted(MCP_LOG_LEVELS)},
            )
        logging.getLogger("mcp_kit").setLevel(MCP_LOG_LEVELS[level])
        logger.info("Log level changed by client", extra={"log_level": level})
        return types.EmptyResult()
