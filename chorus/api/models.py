"""Shared data models for the API layer.

Kept separate from the agents so channel.py, orchestrator.py and
compaction.py can import them without circular imports.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum, StrEnum
from typing import Any

SUMMARY_HEADER = "Summary of the conversation so far:\n"


class Role(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the model, consumed within one turn."""

    id: str
    name: str
    arguments: str  # raw JSON, passed to the invoker untouched

    def to_api(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class Message:
    """A single message in a conversation."""

    role: Role
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)  # assistant only
    tool_call_id: str | None = None  # tool only
    name: str | None = None  # tool only

    def __post_init__(self) -> None:
        self.role = Role(self.role)

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: list[ToolCall] | None = None) -> Message:
        return cls(role=Role.ASSISTANT, content=content, tool_calls=list(tool_calls or []))

    @classmethod
    def tool(cls, call: ToolCall, content: str) -> Message:
        return cls(role=Role.TOOL, content=content, tool_call_id=call.id, name=call.name)

    def to_api(self) -> dict[str, Any]:
        """Render the OpenAI-compatible wire format."""
        data: dict[str, Any] = {"role": str(self.role), "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [tc.to_api() for tc in self.tool_calls]
        if self.role is Role.TOOL:
            data["tool_call_id"] = self.tool_call_id
            if self.name:
                data["name"] = self.name
        return data

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": str(self.role), "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [
                {"id": tc.id, "name": tc.name, "arguments": tc.arguments}
                for tc in self.tool_calls
            ]
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        return data


@dataclass
class Conversation:
    """Ordered message history exclusively owned by one agent.

    Append-only during a turn. Only reset(), remove_last(), replace() and
    install_summary() shrink it. At most one leading system message exists
    at any time. After compaction it holds the instructions and the summary.
    """

    system_instructions: str = ""
    messages: list[Message] = field(default_factory=list)
    summary: str = ""

    def __post_init__(self) -> None:
        if self._system_text() and not self.has_system_message():
            self.messages.insert(0, Message.system(self._system_text()))

    def __len__(self) -> int:
        return len(self.messages)

    def has_system_message(self) -> bool:
        return bool(self.messages) and self.messages[0].role is Role.SYSTEM

    def append(self, message: Message) -> None:
        self.messages.append(message)

    def extend(self, messages: list[Message]) -> None:
        self.messages.extend(messages)

    def reset(self) -> None:
        """Truncate to the leading system message, or to empty."""
        if self.has_system_message():
            self.messages = [self.messages[0]]
        else:
            self.messages = []

    def remove_last(self, n: int) -> None:
        """Remove the last n messages, never the leading system message."""
        if n <= 0 or not self.messages:
            return
        removable = len(self.messages) - (1 if self.has_system_message() else 0)
        n = min(n, removable)
        if n:
            del self.messages[-n:]

    def truncate(self, length: int) -> None:
        """Drop everything after the first `length` messages."""
        del self.messages[length:]

    def _system_text(self) -> str:
        if self.system_instructions and self.summary:
            return f"{self.system_instructions}\n\n{self.summary}"
        return self.system_instructions or self.summary

    def set_system_instructions(self, instructions: str) -> None:
        self.system_instructions = instructions
        if self.has_system_message():
            self.messages[0] = Message.system(self._system_text())
        else:
            self.messages.insert(0, Message.system(self._system_text()))

    def replace(self, messages: list[Message]) -> None:
        self.summary = ""
        self.messages = list(messages)

    def install_summary(self, summary: str) -> None:
        """Collapse the history into one system message: instructions, then summary."""
        self.summary = summary
        self.messages = [Message.system(self._system_text())]

    def transferable(self) -> list[Message]:
        """Messages another persona can take over.

        The leading system message stays behind; a compaction summary is
        carried as a system message of its own.
        """
        start = 1 if self.has_system_message() else 0
        carried = [Message.system(SUMMARY_HEADER + self.summary)] if self.summary else []
        return carried + list(self.messages[start:])

    def context_size(self) -> int:
        """Sum of message content lengths plus the system instruction length."""
        return sum(len(m.content) for m in self.messages) + len(self.system_instructions)

    def to_api(self, extra: list[Message] | None = None) -> list[dict[str, Any]]:
        return [m.to_api() for m in [*self.messages, *(extra or [])]]

    def export_json(self) -> str:
        return json.dumps([m.to_dict() for m in self.messages], indent=2, ensure_ascii=False)


@dataclass
class ModelConfig:
    """Model identifier plus sampling parameters; unset values are not sent."""

    name: str
    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    seed: int | None = None
    stop: list[str] | None = None
    parallel_tool_calls: bool | None = None
    reasoning_effort: str | None = None

    def to_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {"model": self.name}
        for key in (
            "temperature",
            "top_p",
            "max_tokens",
            "frequency_penalty",
            "presence_penalty",
            "seed",
            "stop",
            "reasoning_effort",
        ):
            value = getattr(self, key)
            if value is not None:
                params[key] = value
        return params


@dataclass
class ApiResponse:
    """Parsed non-streaming completion (first choice only)."""

    content: str
    finish_reason: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    reasoning: str = ""
    usage: dict[str, int] | None = None


@dataclass
class StreamChunk:
    """One delivery to a streaming callback."""

    content: str = ""
    reasoning: str = ""
    finish_reason: str = ""
    end_of_reasoning: bool = False


@dataclass
class CompletionResult:
    """Outcome of a successful completion."""

    content: str
    finish_reason: str
    reasoning: str = ""


class ConfirmationDecision(Enum):
    APPROVE = "approve"
    DENY = "deny"
    ABORT_ALL = "abort_all"


@dataclass(frozen=True)
class RoutingDecision:
    agent_id: str
    topic: str


@dataclass(frozen=True)
class CompactionEvent:
    threshold: int
    pre_size: int
    post_size: int
