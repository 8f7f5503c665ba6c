"""Expose REST endpoints as MCP tools."""

import logging
from typing import Any, Dict, List, Optional, Tuple, Type
from urllib.parse import quote

from mcp import types
from pydantic import BaseModel, Field, create_model
from pydantic_core import to_json

from mcp_kit.protocol.exceptions import InvalidParamsError, UpstreamError
from .models import EndpointSpec, ParamSpec
from .rest import RESTClient

logger = logging.getLogger(__name__)

PYTHON_TYPES: Dict[str, Any] = {
    "string": str,
    "integer": int,
    "number": float,
    "boolean": bool,
    "object": Dict[str, Any],
    "array": List[Any],
}


def build_endpoint_model(endpoint: EndpointSpec, model_name: str) -> Type[BaseModel]:
    """Build the pydantic model whose JSON Schema becomes the tool's input schema."""
    fields: Dict[str, Any] = {}
    for name, spec in endpoint.params.items():
        annotation = PYTHON_TYPES[spec.type]
        if spec.required:
            fields[name] = (annotation, Field(..., description=spec.description))
        else:
            fields[name] = (Optional[annotation], Field(default=spec.default, description=spec.description))
    return create_model(model_name, **fields)


def build_request(endpoint: EndpointSpec, arguments: Dict[str, Any]) -> Tuple[str, Dict[str, Any], Optional[Dict[str, Any]]]:
    """
    Route tool arguments into the request path, query string and JSON body.

    Raises:
        InvalidParamsError: If a path placeholder has no value
    """
    path = endpoint.path
    for name in endpoint.path_params():
        value = arguments.get(name)
        if value is None or value == "":
            raise InvalidParamsError(
                f"Missing path parameter '{name}' for {endpoint.name}",
                data={"tool": endpoint.name, "parameter": name},
            )
        path = path.replace(f"{{{name}}}", quote(str(value), safe=""))

    query: Dict[str, Any] = {}
    body: Dict[str, Any] = {}
    for name, spec in endpoint.params.items():
        value = arguments.get(name)
        if value is None or spec.location == "path":
            continue
        if spec.location == "query":
            query[name] = _query_value(value)
        else:
            body[name] = value
    return path, query, (body or None)


def _query_value(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return to_json(value).decode("utf-8")
    return value


class RESTToolset:
    """
    A REST client and the endpoints it serves as tools.

    Usage:
        toolset = RESTToolset(client, endpoints, tool_prefix="crm_")
        toolset.register(server)
    """

    def __init__(self, client: RESTClient, endpoints: List[EndpointSpec], tool_prefix: Optional[str] = None):
        self.client = client
        self.endpoints = list(endpoints)
        self.tool_prefix = tool_prefix or ""

    def tool_name(self, endpoint: EndpointSpec) -> str:
        return f"{self.tool_prefix}{endpoint.name}"

    def register(self, server) -> List[str]:
        """
        Register every endpoint as a tool on ``server``.

        The client is closed when the server shuts down.

        Returns:
            Names of the registered tools
        """
        names = []
        for endpoint in self.endpoints:
            name = self.tool_name(endpoint)
            model = build_endpoint_model(endpoint, f"{name}Arguments")
            server.tools.register(
                self._make_handler(endpoint),
                name=name,
                description=endpoint.description or f"{endpoint.method} {endpoint.path}",
                arguments_model=model,
            )
            names.append(name)

        server.on_shutdown(self.client.close)
        logger.info(
            "Registered REST tools",
            extra={"service": self.client.name, "tools": names}
        )
        return names

    def _make_handler(self, endpoint: EndpointSpec):
        async def handler(**arguments):
            return await self.call_endpoint(endpoint, arguments)

        handler.__name__ = endpoint.name
        return handler

    async def call_endpoint(self, endpoint: EndpointSpec, arguments: Dict[str, Any]) -> Any:
        """
        Call ``endpoint`` with tool arguments.

        Upstream failures come back as an error result so the model can read
        the status and body; missing path parameters are protocol errors.
        """
        path, query, body = build_request(endpoint, arguments)
        try:
            result = await self.client.request(
                endpoint.method,
                path,
                params=query or None,
                json=body,
                cache_ttl=endpoint.cache_ttl,
            )
        except UpstreamError as e:
            detail = e.message
            if e.body is not None:
                detail = f"{detail}: {e.body if isinstance(e.body, str) else to_json(e.body).decode('utf-8')}"
            return types.CallToolResult(
                content=[types.TextContent(type="text", text=detail)],
                isError=True,
            )

        if result is None:
            return {"status": "ok"}
        return result
