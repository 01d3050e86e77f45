"""Unit tests for chorus/api/tools.py -- Tool builder and ToolRegistry.

Covers registration, duplicate rejection, function-calling schema output
(declared parameter order, `required` only when non-empty) and dispatch
through registered handlers.
"""

import pytest

from chorus.api.errors import ChorusError, ToolLoopAborted
from chorus.api.tools import Tool, ToolDefinition, ToolParameter, ToolRegistry


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def registry():
    """Registry with calculate_sum and say_hello handlers."""
    reg = ToolRegistry()

    async def calculate_sum(a: float, b: float) -> dict:
        return {"result": a + b}

    def say_hello(name: str) -> str:
        return f"Hello {name}"

    reg.register(
        Tool("calculate_sum")
        .describe("Calculate the sum of two numbers")
        .param("a", "number", "The first number", required=True)
        .param("b", "number", "The second number", required=True),
        calculate_sum,
    )
    reg.register(
        Tool("say_hello").describe("Say hello to someone").param("name", "string", "Who", required=True),
        say_hello,
    )
    return reg


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


class TestToolBuilder:
    def test_build_keeps_declared_order(self):
        definition = (
            Tool("t").describe("d").param("z", "string").param("a", "integer").param("m", "boolean").build()
        )
        assert [p.name for p in definition.parameters] == ["z", "a", "m"]

    def test_definition_is_frozen(self):
        definition = Tool("t").build()
        with pytest.raises(AttributeError):
            definition.name = "other"

    def test_unsupported_type_rejected(self):
        with pytest.raises(ValueError, match="Unsupported"):
            Tool("t").param("x", "float")

    def test_duplicate_parameter_rejected(self):
        with pytest.raises(ValueError, match="Duplicate"):
            Tool("t").param("x", "string").param("x", "number")


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestToolRegistry:
    def test_register_and_get(self, registry):
        assert registry.names() == ["calculate_sum", "say_hello"]
        assert "say_hello" in registry
        assert len(registry) == 2
        assert registry.get("calculate_sum").description == "Calculate the sum of two numbers"
        assert registry.get("missing") is None

    def test_duplicate_name_rejected(self, registry):
        with pytest.raises(ValueError, match="already registered"):
            registry.register(Tool("say_hello"))

    def test_register_plain_definition(self):
        reg = ToolRegistry()
        reg.register(ToolDefinition("ping", "Ping", (ToolParameter("host", "string"),)))
        assert reg.names() == ["ping"]

    def test_definitions_schema(self, registry):
        definition = registry.definitions()[0]
        assert definition == {
            "type": "function",
            "function": {
                "name": "calculate_sum",
                "description": "Calculate the sum of two numbers",
                "parameters": {
                    "type": "object",
                    "properties": {
                        "a": {"type": "number", "description": "The first number"},
                        "b": {"type": "number", "description": "The second number"},
                    },
                    "required": ["a", "b"],
                },
            },
        }

    def test_properties_in_declared_order(self):
        reg = ToolRegistry()
        reg.register(Tool("t").param("second", "string").param("first", "string"))
        properties = reg.definitions()[0]["function"]["parameters"]["properties"]
        assert list(properties) == ["second", "first"]

    def test_required_omitted_when_empty(self):
        reg = ToolRegistry()
        reg.register(Tool("t").param("opt", "string"))
        assert "required" not in reg.definitions()[0]["function"]["parameters"]


class TestInvoke:
    @pytest.mark.asyncio
    async def test_async_handler_result_json_encoded(self, registry):
        assert await registry.invoke("calculate_sum", '{"a": 2, "b": 2}') == '{"result": 4}'

    @pytest.mark.asyncio
    async def test_sync_handler_string_passthrough(self, registry):
        assert await registry.invoke("say_hello", '{"name": "Amy"}') == "Hello Amy"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, registry):
        with pytest.raises(ChorusError, match="Unknown tool"):
            await registry.invoke("nope", "{}")

    @pytest.mark.asyncio
    async def test_invalid_arguments(self, registry):
        with pytest.raises(ChorusError, match="Invalid arguments"):
            await registry.invoke("say_hello", "{not json")

    @pytest.mark.asyncio
    async def test_non_object_arguments(self, registry):
        with pytest.raises(ChorusError, match="JSON object"):
            await registry.invoke("say_hello", "[1, 2]")

    @pytest.mark.asyncio
    async def test_none_result_is_empty(self):
        reg = ToolRegistry()
        reg.register(Tool("noop"), lambda: None)
        assert await reg.invoke("noop", "") == ""

    @pytest.mark.asyncio
    async def test_abort_sentinel_propagates(self):
        reg = ToolRegistry()

        async def stop():
            raise ToolLoopAborted()

        reg.register(Tool("stop"), stop)
        with pytest.raises(ToolLoopAborted):
            await reg.invoke("stop", "{}")
