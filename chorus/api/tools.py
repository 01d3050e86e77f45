"""Tool registry -- catalogue of tools a persona may ask the model to call.

Provides:
- Tool: fluent builder for a ToolDefinition
- ToolRegistry: registers definitions (optionally with a handler), renders
  the function-calling schema and dispatches calls to handlers
- Invoker / Confirmer: the callable boundaries used by the orchestrator
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from chorus.api.errors import ChorusError
from chorus.api.models import ConfirmationDecision

logger = logging.getLogger(__name__)

# async (name, arguments_json) -> result text
Invoker = Callable[[str, str], Awaitable[str]]

# (name, arguments_json) -> decision, sync or async
Confirmer = Callable[[str, str], ConfirmationDecision | Awaitable[ConfirmationDecision]]

JSON_TYPES = {"string", "number", "integer", "boolean", "array", "object"}


@dataclass(frozen=True)
class ToolParameter:
    name: str
    type: str
    description: str = ""
    required: bool = False


@dataclass(frozen=True)
class ToolDefinition:
    """Immutable tool declaration. Parameters keep their declared order."""

    name: str
    description: str = ""
    parameters: tuple[ToolParameter, ...] = ()

    def to_api(self) -> dict[str, Any]:
        properties = {
            p.name: {"type": p.type, "description": p.description} for p in self.parameters
        }
        schema: dict[str, Any] = {"type": "object", "properties": properties}
        required = [p.name for p in self.parameters if p.required]
        if required:
            schema["required"] = required
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": schema,
            },
        }


@dataclass
class Tool:
    """Fluent builder:

        Tool("calculate_sum").describe("Add two numbers")
            .param("a", "number", "first operand", required=True)
            .param("b", "number", "second operand", required=True)
    """

    name: str
    description: str = ""
    parameters: list[ToolParameter] = field(default_factory=list)

    def describe(self, description: str) -> Tool:
        self.description = description
        return self

    def param(self, name: str, type: str, description: str = "", required: bool = False) -> Tool:
        if type not in JSON_TYPES:
            raise ValueError(f"Unsupported JSON type for parameter {name}: {type}")
        if any(p.name == name for p in self.parameters):
            raise ValueError(f"Duplicate parameter: {name}")
        self.parameters.append(ToolParameter(name, type, description, required))
        return self

    def build(self) -> ToolDefinition:
        return ToolDefinition(self.name, self.description, tuple(self.parameters))


class ToolRegistry:
    """Registers tool definitions and dispatches calls to their handlers.

    A handler is an async callable taking the decoded arguments as keyword
    arguments. Its return value is sent back as-is when it is a string and
    JSON-encoded otherwise. Registries without handlers are still useful:
    the orchestrator accepts an external Invoker instead of invoke().
    """

    def __init__(self) -> None:
        self._definitions: dict[str, ToolDefinition] = {}
        self._handlers: dict[str, Callable[..., Any]] = {}

    def register(
        self,
        tool: ToolDefinition | Tool,
        handler: Callable[..., Any] | None = None,
    ) -> None:
        definition = tool.build() if isinstance(tool, Tool) else tool
        if definition.name in self._definitions:
            raise ValueError(f"Tool already registered: {definition.name}")
        self._definitions[definition.name] = definition
        if handler is not None:
            self._handlers[definition.name] = handler

    def get(self, name: str) -> ToolDefinition | None:
        return self._definitions.get(name)

    def names(self) -> list[str]:
        return list(self._definitions)

    def __contains__(self, name: str) -> bool:
        return name in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)

    def definitions(self) -> list[dict[str, Any]]:
        """Return all tool definitions in function-calling format."""
        return [d.to_api() for d in self._definitions.values()]

    async def invoke(self, name: str, arguments: str) -> str:
        """Default Invoker: decode arguments and call the registered handler.

        Raises ChorusError for unknown tools or undecodable arguments; the
        orchestrator serializes these like any other tool failure.
        ToolLoopAborted raised by a handler propagates untouched.
        """
        handler = self._handlers.get(name)
        if handler is None:
            raise ChorusError(f"Unknown tool: {name}")

        try:
            kwargs = json.loads(arguments) if arguments.strip() else {}
        except json.JSONDecodeError as e:
            raise ChorusError(f"Invalid arguments for {name}: {e}") from e
        if not isinstance(kwargs, dict):
            raise ChorusError(f"Arguments for {name} must be a JSON object")

        result = handler(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        if result is None:
            return ""
        if isinstance(result, str):
            return result
        return json.dumps(result, ensure_ascii=False)
