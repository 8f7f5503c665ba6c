"""Tests for tool, resource and prompt registries."""

import base64
import json
from typing import List, Optional

import pytest
from mcp import types
from pydantic import BaseModel

from mcp_kit.protocol.exceptions import (
    InvalidParamsError,
    PromptNotFoundError,
    ResourceNotFoundError,
    ToolNotFoundError,
    UpstreamError,
)
from mcp_kit.server.registry import (
    PromptRegistry,
    ResourceRegistry,
    ToolRegistry,
    build_arguments_model,
    to_content,
)


class TestArgumentsModel:
    """Test schema derivation from signatures."""

    def test_required_and_optional_fields(self):
        def search(query: str, limit: int = 10, tags: Optional[List[str]] = None):
            pass

        schema = build_arguments_model(search, "SearchArguments").model_json_schema()

        assert schema["required"] == ["query"]
        assert schema["properties"]["query"]["type"] == "string"
        assert schema["properties"]["limit"]["default"] == 10

    def test_self_and_varargs_are_skipped(self):
        class Service:
            def run(self, name: str, *args, **kwargs):
                pass

        schema = build_arguments_model(Service().run, "RunArguments").model_json_schema()
        assert list(schema["properties"]) == ["name"]


class TestToolRegistry:
    """Test tool registration and invocation."""

    @pytest.fixture
    def registry(self):
        registry = ToolRegistry()

        @registry.tool()
        async def add(a: int, b: int) -> int:
            """Add two numbers.

            Longer explanation that is not part of the description.
            """
            return a + b

        @registry.tool(name="echo", description="Echo text back")
        def echo_sync(text: str) -> str:
            return text

        @registry.tool()
        async def explode() -> str:
            raise RuntimeError("boom")

        @registry.tool()
        async def upstream() -> str:
            raise UpstreamError("bad gateway", status_code=502)

        return registry

    def test_list_tools(self, registry):
        tools = {tool.name: tool for tool in registry.list()}

        assert set(tools) == {"add", "echo", "explode", "upstream"}
        assert tools["add"].description == "Add two numbers."
        assert tools["add"].inputSchema["required"] == ["a", "b"]
        assert tools["echo"].description == "Echo text back"
        assert tools["explode"].inputSchema["properties"] == {}

    def test_duplicate_name_rejected(self, registry):
        with pytest.raises(ValueError):
            registry.register(lambda: None, name="add")

    @pytest.mark.asyncio
    async def test_call_async_tool(self, registry):
        result = await registry.call("add", {"a": 2, "b": 3})

        assert result.isError is False
        assert result.content[0].text == "5"

    @pytest.mark.asyncio
    async def test_call_sync_tool(self, registry):
        result = await registry.call("echo", {"text": "hi"})
        assert result.content[0].text == "hi"

    @pytest.mark.asyncio
    async def test_validation_error_is_invalid_params(self, registry):
        with pytest.raises(InvalidParamsError) as exc_info:
            await registry.call("add", {"a": "not a number"})
        assert isinstance(exc_info.value.data, list)

    @pytest.mark.asyncio
    async def test_unknown_tool(self, registry):
        with pytest.raises(ToolNotFoundError):
            await registry.call("missing", {})

    @pytest.mark.asyncio
    async def test_tool_exception_becomes_error_result(self, registry):
        result = await registry.call("explode", {})

        assert result.isError is True
        assert "boom" in result.content[0].text

    @pytest.mark.asyncio
    async def test_protocol_errors_propagate(self, registry):
        with pytest.raises(UpstreamError):
            await registry.call("upstream", {})

    @pytest.mark.asyncio
    async def test_explicit_arguments_model(self):
        class Point(BaseModel):
            x: int
            y: int

        registry = ToolRegistry()

        async def norm(**kwargs):
            return abs(kwargs["x"]) + abs(kwargs["y"])

        registry.register(norm, name="manhattan", arguments_model=Point)
        result = await registry.call("manhattan", {"x": -2, "y": 3})

        assert result.content[0].text == "5"
        assert registry.get("manhattan").input_schema["required"] == ["x", "y"]


class TestToContent:
    """Test conversion of return values to content blocks."""

    def test_none(self):
        assert to_content(None) == []

    def test_dict_is_json_text(self):
        content = to_content({"b": 1})
        assert json.loads(content[0].text) == {"b": 1}

    def test_content_passthrough(self):
        block = types.TextContent(type="text", text="x")
        assert to_content(block) == [block]
        assert to_content([block, block]) == [block, block]


class TestResourceRegistry:
    """Test static resources and URI templates."""

    @pytest.fixture
    def registry(self):
        registry = ResourceRegistry()

        @registry.resource("config://app", description="App config", mime_type="application/json")
        def app_config():
            return {"debug": False}

        @registry.resource("users://{user_id}/profile")
        async def profile(user_id: str) -> str:
            return f"profile of {user_id}"

        @registry.resource("files://logo", mime_type="image/png")
        def logo() -> bytes:
            return b"\x89PNG"

        return registry

    def test_list_separates_templates(self, registry):
        assert [str(r.uri) for r in registry.list()] == ["config://app", "files://logo"]
        assert [t.uriTemplate for t in registry.list_templates()] == ["users://{user_id}/profile"]

    @pytest.mark.asyncio
    async def test_read_static(self, registry):
        result = await registry.read("config://app")
        contents = result.contents[0]

        assert contents.mimeType == "application/json"
        assert json.loads(contents.text) == {"debug": False}

    @pytest.mark.asyncio
    async def test_read_template(self, registry):
        result = await registry.read("users://42/profile")
        assert result.contents[0].text == "profile of 42"

    @pytest.mark.asyncio
    async def test_template_does_not_cross_segments(self, registry):
        with pytest.raises(ResourceNotFoundError):
            await registry.read("users://42/extra/profile")

    @pytest.mark.asyncio
    async def test_read_bytes_as_blob(self, registry):
        result = await registry.read("files://logo")
        assert base64.b64decode(result.contents[0].blob) == b"\x89PNG"

    @pytest.mark.asyncio
    async def test_unknown_uri(self, registry):
        with pytest.raises(ResourceNotFoundError):
            await registry.read("config://other")


class TestPromptRegistry:
    """Test prompt rendering."""

    @pytest.fixture
    def registry(self):
        registry = PromptRegistry()

        @registry.prompt()
        def review(code: str, language: str = "python"):
            """Review a snippet."""
            return f"Review this {language} code:\n{code}"

        @registry.prompt(name="chat")
        def conversation(topic: str):
            return [("user", f"Tell me about {topic}"), ("assistant", "Sure.")]

        return registry

    def test_list_prompts(self, registry):
        prompts = {p.name: p for p in registry.list()}

        assert prompts["review"].description == "Review a snippet."
        assert [(a.name, a.required) for a in prompts["review"].arguments] == [
            ("code", True), ("language", False)
        ]

    @pytest.mark.asyncio
    async def test_get_string_prompt(self, registry):
        result = await registry.get("review", {"code": "x = 1"})

        assert len(result.messages) == 1
        assert result.messages[0].role == "user"
        assert "python code" in result.messages[0].content.text

    @pytest.mark.asyncio
    async def test_get_message_list(self, registry):
        result = await registry.get("chat", {"topic": "MCP"})
        assert [m.role for m in result.messages] == ["user", "assistant"]

    @pytest.mark.asyncio
    async def test_missing_required_argument(self, registry):
        with pytest.raises(InvalidParamsError):
            await registry.get("review", {})

    @pytest.mark.asyncio
    async def test_unknown_prompt(self, registry):
        with pytest.raises(PromptNotFoundError):
            await registry.get("nope")
