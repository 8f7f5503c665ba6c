"""
Tool, resource and prompt registries.

Registries turn plain Python callables into MCP capabilities. Tool input
schemas and prompt arguments are derived from the function signature, and
tool arguments are validated with pydantic before the function runs.
"""

import asyncio
import base64
import inspect
import logging
import re
import typing
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from mcp import types
from pydantic import BaseModel, ValidationError, create_model
from pydantic_core import to_json

from mcp_kit.protocol.exceptions import (
    InvalidParamsError,
    MCPError,
    PromptNotFoundError,
    ResourceNotFoundError,
    ToolNotFoundError,
)

logger = logging.getLogger(__name__)

CONTENT_TYPES = (types.TextContent, types.ImageContent, types.EmbeddedResource)


def describe(func: Callable[..., Any]) -> Optional[str]:
    """Return the first paragraph of a callable's docstring."""
    doc = inspect.getdoc(func)
    if not doc:
        return None
    return doc.split("\n\n", 1)[0].strip()


def build_arguments_model(func: Callable[..., Any], model_name: str) -> Type[BaseModel]:
    """
    Build a pydantic model mirroring a function's keyword-capable parameters.

    ``self``/``cls`` and variadic parameters are skipped; parameters without
    an annotation accept any value.
    """
    try:
        hints = typing.get_type_hints(func)
    except Exception:
        hints = {}

    fields: Dict[str, Any] = {}
    for name, param in inspect.signature(func).parameters.items():
        if name in ("self", "cls"):
            continue
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        annotation = hints.get(name, Any)
        default = ... if param.default is inspect.Parameter.empty else param.default
        fields[name] = (annotation, default)

    return create_model(model_name, **fields)


async def _invoke(func: Callable[..., Any], kwargs: Dict[str, Any]) -> Any:
    """Await coroutine functions; run plain functions in a worker thread."""
    if inspect.iscoroutinefunction(func):
        return await func(**kwargs)
    result = await asyncio.to_thread(func, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result


def to_content(value: Any) -> List[Any]:
    """Convert a tool return value into MCP content blocks."""
    if value is None:
        return []
    if isinstance(value, CONTENT_TYPES):
        return [value]
    if isinstance(value, str):
        return [types.TextContent(type="text", text=value)]
    if isinstance(value, (list, tuple)) and value and all(isinstance(v, CONTENT_TYPES) for v in value):
        return list(value)
    text = to_json(value, indent=2, fallback=str).decode("utf-8")
    return [types.TextContent(type="text", text=text)]


@dataclass
class RegisteredTool:
    """A tool and the model used to validate its arguments."""

    name: str
    func: Callable[..., Any]
    description: Optional[str]
    arguments_model: Type[BaseModel]
    input_schema: Dict[str, Any] = field(default_factory=dict)

    def to_tool(self) -> types.Tool:
        return types.Tool(name=self.name, description=self.description, inputSchema=self.input_schema)


class ToolRegistry:
    """Registry of callable tools exposed through tools/list and tools/call."""

    def __init__(self):
        self._tools: Dict[str, RegisteredTool] = {}

    def register(
        self,
        func: Callable[..., Any],
        name: Optional[str] = None,
        description: Optional[str] = None,
        arguments_model: Optional[Type[BaseModel]] = None,
    ) -> RegisteredTool:
        """
        Register a callable as a tool.

        Args:
            func: Sync or async callable; called with validated keyword arguments
            name: Tool name (defaults to the function name)
            description: Tool description (defaults to the docstring summary)
            arguments_model: Explicit argument model instead of the signature

        Returns:
            The registered tool

        Raises:
            ValueError: If a tool with the same name already exists
        """
        tool_name = name or func.__name__
        if tool_name in self._tools:
            raise ValueError(f"Tool already registered: {tool_name}")

        model = arguments_model or build_arguments_model(func, f"{tool_name}Arguments")
        schema = model.model_json_schema()
        schema.setdefault("properties", {})

        tool = RegisteredTool(
            name=tool_name,
            func=func,
            description=description or describe(func),
            arguments_model=model,
            input_schema=schema,
        )
        self._tools[tool_name] = tool
        logger.debug("Registered tool", extra={"tool": tool_name})
        return tool

    def tool(self, name: Optional[str] = None, description: Optional[str] = None):
        """Decorator form of ``register``."""
        def decorator(func):
            self.register(func, name=name, description=description)
            return func
        return decorator

    def get(self, name: str) -> RegisteredTool:
        try:
            return self._tools[name]
        except KeyError:
            raise ToolNotFoundError(name)

    def list(self) -> List[types.Tool]:
        return [tool.to_tool() for tool in self._tools.values()]

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    async def call(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> types.CallToolResult:
        """
        Validate arguments and run a tool.

        Failures inside the tool are reported in the result with
        ``isError=True`` so the model can see and react to them. ``MCPError``
        subclasses are protocol errors and propagate to the caller.

        Raises:
            ToolNotFoundError: If no tool is registered under ``name``
            InvalidParamsError: If the arguments fail validation
        """
        tool = self.get(name)

        try:
            validated = tool.arguments_model.model_validate(arguments or {})
        except ValidationError as e:
            raise InvalidParamsError(
                f"Invalid arguments for tool {name}",
                data=e.errors(include_url=False, include_context=False),
            )

        kwargs = {key: value for key, value in validated}
        try:
            result = await _invoke(tool.func, kwargs)
        except MCPError:
            raise
        except Exception as e:
            logger.warning(
                "Tool raised an exception",
                extra={"tool": name, "error_type": type(e).__name__, "error": str(e)},
                exc_info=True,
            )
            return types.CallToolResult(
                content=[types.TextContent(type="text", text=f"Error executing tool {name}: {e}")],
                isError=True,
            )

        if isinstance(result, types.CallToolResult):
            return result
        return types.CallToolResult(content=to_content(result), isError=False)


_TEMPLATE_PARAM = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass
class RegisteredResource:
    """A static resource or a URI template bound to a reader function."""

    uri: str
    func: Callable[..., Any]
    name: str
    description: Optional[str]
    mime_type: str
    pattern: Optional[re.Pattern] = None

    @property
    def is_template(self) -> bool:
        return self.pattern is not None

    def match(self, uri: str) -> Optional[Dict[str, str]]:
        if self.pattern is None:
            return {} if uri == self.uri else None
        matched = self.pattern.fullmatch(uri)
        return matched.groupdict() if matched else None


def _compile_template(uri_template: str) -> re.Pattern:
    parts = []
    last = 0
    for match in _TEMPLATE_PARAM.finditer(uri_template):
        parts.append(re.escape(uri_template[last:match.start()]))
        parts.append(f"(?P<{match.group(1)}>[^/]+)")
        last = match.end()
    parts.append(re.escape(uri_template[last:]))
    return re.compile("".join(parts))


class ResourceRegistry:
    """Registry of readable resources and resource templates."""

    def __init__(self):
        self._resources: Dict[str, RegisteredResource] = {}

    def register(
        self,
        uri: str,
        func: Callable[..., Any],
        name: Optional[str] = None,
        description: Optional[str] = None,
        mime_type: str = "text/plain",
    ) -> RegisteredResource:
        """
        Register a resource reader.

        A URI containing ``{param}`` placeholders becomes a template; the
        matched values are passed to ``func`` as keyword arguments.
        """
        if uri in self._resources:
            raise ValueError(f"Resource already registered: {uri}")

        pattern = _compile_template(uri) if _TEMPLATE_PARAM.search(uri) else None
        resource = RegisteredResource(
            uri=uri,
            func=func,
            name=name or func.__name__,
            description=description or describe(func),
            mime_type=mime_type,
            pattern=pattern,
        )
        self._resources[uri] = resource
        return resource

    def resource(self, uri: str, name: Optional[str] = None, description: Optional[str] = None,
                 mime_type: str = "text/plain"):
        """Decorator form of ``register``."""
        def decorator(func):
            self.register(uri, func, name=name, description=description, mime_type=mime_type)
            return func
        return decorator

    def list(self) -> List[types.Resource]:
        return [
            types.Resource(uri=r.uri, name=r.name, description=r.description, mimeType=r.mime_type)
            for r in self._resources.values()
            if not r.is_template
        ]

    def list_templates(self) -> List[types.ResourceTemplate]:
        return [
            types.ResourceTemplate(uriTemplate=r.uri, name=r.name, description=r.description, mimeType=r.mime_type)
            for r in self._resources.values()
            if r.is_template
        ]

    def _resolve(self, uri: str) -> Tuple[RegisteredResource, Dict[str, str]]:
        static = self._resources.get(uri)
        if static is not None and not static.is_template:
            return static, {}
        for resource in self._resources.values():
            if resource.is_template:
                params = resource.match(uri)
                if params is not None:
                    return resource, params
        raise ResourceNotFoundError(uri)

    async def read(self, uri: str) -> types.ReadResourceResult:
        """
        Read a resource by URI.

        Raises:
            ResourceNotFoundError: If no resource or template matches
        """
        resource, params = self._resolve(uri)
        value = await _invoke(resource.func, params)

        if isinstance(value, types.ReadResourceResult):
            return value
        if isinstance(value, bytes):
            contents = types.BlobResourceContents(
                uri=uri,
                mimeType=resource.mime_type,
                blob=base64.b64encode(value).decode("ascii"),
            )
        else:
            text = value if isinstance(value, str) else to_json(value, indent=2, fallback=str).decode("utf-8")
            contents = types.TextResourceContents(uri=uri, mimeType=resource.mime_type, text=text)
        return types.ReadResourceResult(contents=[contents])


@dataclass
class RegisteredPrompt:
    name: str
    func: Callable[..., Any]
    description: Optional[str]
    arguments: List[types.PromptArgument]

    def to_prompt(self) -> types.Prompt:
        return types.Prompt(name=self.name, description=self.description, arguments=self.arguments)


def _to_prompt_message(item: Any) -> types.PromptMessage:
    if isinstance(item, types.PromptMessage):
        return item
    if isinstance(item, str):
        return types.PromptMessage(role="user", content=types.TextContent(type="text", text=item))
    if isinstance(item, tuple) and len(item) == 2:
        role, text = item
        return types.PromptMessage(role=role, content=types.TextContent(type="text", text=str(text)))
    raise TypeError(f"Unsupported prompt message: {item!r}")


class PromptRegistry:
    """Registry of prompt templates."""

    def __init__(self):
        self._prompts: Dict[str, RegisteredPrompt] = {}

    def register(self, func: Callable[..., Any], name: Optional[str] = None,
                 description: Optional[str] = None) -> RegisteredPrompt:
        prompt_name = name or func.__name__
        if prompt_name in self._prompts:
            raise ValueError(f"Prompt already registered: {prompt_name}")

        arguments = [
            types.PromptArgument(name=pname, required=param.default is inspect.Parameter.empty)
            for pname, param in inspect.signature(func).parameters.items()
            if param.kind not in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)
        ]
        prompt = RegisteredPrompt(
            name=prompt_name,
            func=func,
            description=description or describe(func),
            arguments=arguments,
        )
        self._prompts[prompt_name] = prompt
        return prompt

    def prompt(self, name: Optional[str] = None, description: Optional[str] = None):
        """Decorator form of ``register``."""
        def decorator(func):
            self.register(func, name=name, description=description)
            return func
        return decorator

    def list(self) -> List[types.Prompt]:
        return [p.to_prompt() for p in self._prompts.values()]

    async def get(self, name: str, arguments: Optional[Dict[str, str]] = None) -> types.GetPromptResult:
        """
        Render a prompt.

        Raises:
            PromptNotFoundError: If the prompt is unknown
            InvalidParamsError: If a required argument is missing
        """
        prompt = self._prompts.get(name)
        if prompt is None:
            raise PromptNotFoundError(name)

        arguments = arguments or {}
        missing = [a.name for a in prompt.arguments if a.required and a.name not in arguments]
        if missing:
            raise InvalidParamsError(
                f"Missing required arguments for prompt {name}: {', '.join(missing)}",
                data={"missing": missing},
            )

        known = {a.name for a in prompt.arguments}
        value = await _invoke(prompt.func, {k: v for k, v in arguments.items() if k in known})

        if isinstance(value, types.GetPromptResult):
            return value
        items = value if isinstance(value, list) else [value]
        return types.GetPromptResult(
            description=prompt.description,
            messages=[_to_prompt_message(item) for item in items],
        )
