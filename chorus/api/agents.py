"""Agents -- a conversation, a model configuration and a completion channel.

Each agent kind is its own class with its own capability set:

- ChatAgent: the personas that answer users (streaming and plain completions)
- StructuredAgent: returns a validated pydantic model (used by the router)
- CompressorAgent: condenses a message history (used by the compactor)
"""

from __future__ import annotations

import logging
from typing import Generic, TypeVar

from pydantic import BaseModel, ValidationError

from chorus.api.channel import ChunkCallback, CompletionChannel
from chorus.api.errors import BackendError, ChorusError
from chorus.api.models import CompletionResult, Conversation, Message, ModelConfig
from chorus.config import Settings

logger = logging.getLogger(__name__)

OutputT = TypeVar("OutputT", bound=BaseModel)


def default_model_config(settings: Settings) -> ModelConfig:
    """Model configuration built from Settings."""
    return ModelConfig(
        name=settings.model,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        parallel_tool_calls=settings.parallel_tool_calls,
        reasoning_effort=settings.reasoning_effort,
    )


class BaseAgent:
    """Shared history management for every agent kind.

    The conversation is created here and only mutated by this agent's own
    operations (or by a router hand-off / compaction between turns).
    """

    def __init__(
        self,
        name: str,
        settings: Settings,
        system_instructions: str = "",
        model: ModelConfig | None = None,
        keep_history: bool = True,
        channel: CompletionChannel | None = None,
        description: str = "",
    ) -> None:
        self.name = name
        self.description = description
        self.keep_history = keep_history
        self.model = model or default_model_config(settings)
        self.channel = channel or CompletionChannel(settings)
        self.conversation = Conversation(system_instructions=system_instructions)
        self._settings = settings

    async def start(self) -> None:
        await self.channel.start()
        if self._settings.verify_model:
            await self.channel.verify_model(self.model.name)

    async def close(self) -> None:
        await self.channel.close()

    @property
    def messages(self) -> list[Message]:
        return list(self.conversation.messages)

    def add_message(self, message: Message) -> None:
        self.conversation.append(message)

    def add_messages(self, messages: list[Message]) -> None:
        self.conversation.extend(messages)

    def reset_messages(self) -> None:
        self.conversation.reset()

    def remove_last_messages(self, n: int) -> None:
        self.conversation.remove_last(n)

    def set_system_instructions(self, instructions: str) -> None:
        self.conversation.set_system_instructions(instructions)

    def context_size(self) -> int:
        return self.conversation.context_size()

    def export_messages_json(self) -> str:
        return self.conversation.export_json()

    def stop_stream(self) -> None:
        self.channel.stop_stream()


class ChatAgent(BaseAgent):
    """A persona that answers the user."""

    async def complete(self, new_messages: list[Message]) -> CompletionResult:
        """Non-streaming completion.

        On success new_messages plus exactly one assistant message are
        appended (when keep_history is set). Failures leave history as is.
        """
        response = await self.channel.complete(self.conversation.to_api(new_messages), self.model)
        if self.keep_history:
            self.conversation.extend(new_messages)
            self.conversation.append(Message.assistant(response.content))
        return CompletionResult(
            content=response.content,
            finish_reason=response.finish_reason,
            reasoning=response.reasoning,
        )

    async def stream_completion(
        self,
        new_messages: list[Message],
        on_chunk: ChunkCallback,
    ) -> CompletionResult:
        """Streaming completion with the same mutation contract as complete().

        Cancellation, backend errors and callback errors propagate and
        nothing is appended.
        """
        result = await self.channel.stream(
            self.conversation.to_api(new_messages), self.model, on_chunk
        )
        if self.keep_history:
            self.conversation.extend(new_messages)
            self.conversation.append(Message.assistant(result.content))
        logger.debug(
            "[%s] streamed %d chars (finish_reason=%s)",
            self.name,
            len(result.content),
            result.finish_reason,
        )
        return result


class StructuredAgent(BaseAgent, Generic[OutputT]):
    """Agent whose replies are constrained to a pydantic model's JSON schema."""

    def __init__(self, name: str, settings: Settings, output_type: type[OutputT], **kwargs) -> None:
        kwargs.setdefault("keep_history", False)
        super().__init__(name, settings, **kwargs)
        self.output_type = output_type

    def response_format(self) -> dict:
        schema_name = self.output_type.__name__
        return {
            "type": "json_schema",
            "json_schema": {
                "name": schema_name,
                "description": f"Notable information about {schema_name.lower()}",
                "schema": self.output_type.model_json_schema(),
                "strict": True,
            },
        }

    async def generate(self, new_messages: list[Message]) -> OutputT:
        """Run one completion and validate its content as output_type."""
        response = await self.channel.complete(
            self.conversation.to_api(new_messages),
            self.model,
            response_format=self.response_format(),
        )
        try:
            output = self.output_type.model_validate_json(response.content)
        except ValidationError as e:
            logger.error("[%s] invalid structured response: %s", self.name, response.content[:200])
            raise BackendError(f"Malformed structured response: {e}") from e

        if self.keep_history:
            self.conversation.extend(new_messages)
            self.conversation.append(Message.assistant(response.content))
        return output


class CompressionPrompts:
    MINIMALIST = (
        "Summarize the conversation history concisely, preserving key facts, "
        "decisions, and context needed for continuation."
    )
    STRUCTURED = (
        "Compress this conversation into a brief summary including:\n"
        "- Main topics discussed\n"
        "- Key decisions/conclusions\n"
        "- Important context for next exchanges\n"
        "Keep it under 200 words."
    )
    ULTRA_SHORT = "Summarize this conversation: extract key facts, decisions, and essential context only."
    CONTINUITY = (
        "Create a compact summary of this conversation that preserves all information "
        "needed to continue the discussion naturally."
    )


COMPRESSOR_SYSTEM_PROMPT = (
    "You are a context compression assistant. Your task is to summarize conversations "
    "concisely, preserving key facts, decisions, and context needed for continuation."
)


class CompressorAgent(BaseAgent):
    """Summarizing sub-agent. Stateless between calls."""

    def __init__(
        self,
        name: str,
        settings: Settings,
        compression_prompt: str = CompressionPrompts.MINIMALIST,
        **kwargs,
    ) -> None:
        kwargs.setdefault("system_instructions", COMPRESSOR_SYSTEM_PROMPT)
        kwargs.setdefault("keep_history", False)
        super().__init__(name, settings, **kwargs)
        self.compression_prompt = compression_prompt

    @staticmethod
    def serialize(messages: list[Message]) -> str:
        """Render messages as `role: content` lines."""
        return "".join(f"{m.role}: {m.content}\n" for m in messages)

    async def compress(self, messages: list[Message]) -> str:
        """Return the condensed text for `messages`.

        Raises ChorusError when the engine returns an empty summary.
        """
        self.reset_messages()
        request = [
            Message.user(self.compression_prompt),
            Message.user("CONVERSATION:\n" + self.serialize(messages)),
        ]
        response = await self.channel.complete(self.conversation.to_api(request), self.model)
        summary = response.content.strip()
        if not summary:
            raise ChorusError("compressor returned an empty summary")
        return summary
