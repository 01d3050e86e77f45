"""Crew -- a team of personas answering one user through a single pipeline.

Turn pipeline (one turn at a time):
  1. route the question to a persona (optional), handing over history
  2. inject retrieved context as a system message (optional)
  3. resolve tool calls against the persona's conversation (optional)
  4. stream the final answer to the caller
  5. compact the persona's context if it grew too large (optional)

Failures in 1-4 abort the turn and leave no partial answer behind.
Compaction failures are logged and never affect the delivered answer.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from chorus.api.agents import ChatAgent
from chorus.api.channel import ChunkCallback
from chorus.api.compaction import ContextCompactor
from chorus.api.errors import PersonaError
from chorus.api.models import (
    CompactionEvent,
    CompletionResult,
    Message,
    ModelConfig,
    RoutingDecision,
)
from chorus.api.orchestrator import ToolCallOrchestrator, ToolCallResult
from chorus.api.router import AgentRouter
from chorus.api.tools import Confirmer, Invoker, ToolRegistry

logger = logging.getLogger(__name__)

# async (question) -> relevant snippets
Retriever = Callable[[str], Awaitable[list[str]]]
TurnHook = Callable[["Crew"], None]

CONTEXT_HEADER = "Relevant information to help you answer the question:\n"
CONTEXT_SEPARATOR = "\n---\n"


class Crew:
    """Owns the persona registry and runs turns against the selected persona."""

    def __init__(
        self,
        personas: dict[str, ChatAgent],
        selected_id: str,
        router: AgentRouter | None = None,
        tools: ToolRegistry | None = None,
        invoker: Invoker | None = None,
        confirm: Confirmer | None = None,
        compactor: ContextCompactor | None = None,
        retriever: Retriever | None = None,
        max_turns: int = 10,
        parallel_tool_calls: bool = False,
        tool_model: ModelConfig | None = None,
        before_turn: TurnHook | None = None,
        after_turn: TurnHook | None = None,
    ) -> None:
        if selected_id not in personas:
            raise PersonaError(f"Unknown agent: {selected_id}")
        self._personas = dict(personas)
        self._selected_id = selected_id
        self.router = router
        self.tools = tools
        self.invoker = invoker
        self.confirm = confirm
        self.compactor = compactor
        self.retriever = retriever
        self.max_turns = max_turns
        self.parallel_tool_calls = parallel_tool_calls
        self.tool_model = tool_model
        self.before_turn = before_turn
        self.after_turn = after_turn

        self.last_routing: RoutingDecision | None = None
        self.last_tool_result: ToolCallResult | None = None
        self.last_compaction: CompactionEvent | None = None
        self.last_compaction_error: Exception | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        for agent in self._personas.values():
            await agent.start()
        if self.router:
            await self.router.classifier.start()
        if self.compactor:
            await self.compactor.compressor.start()

    async def close(self) -> None:
        for agent in self._personas.values():
            await agent.close()
        if self.router:
            await self.router.classifier.close()
        if self.compactor:
            await self.compactor.compressor.close()

    # ------------------------------------------------------------------
    # Persona registry
    # ------------------------------------------------------------------

    @property
    def personas(self) -> dict[str, ChatAgent]:
        return dict(self._personas)

    @property
    def selected_id(self) -> str:
        return self._selected_id

    @property
    def current(self) -> ChatAgent:
        return self._personas[self._selected_id]

    def add_persona(self, agent_id: str, agent: ChatAgent) -> None:
        if agent_id in self._personas:
            raise PersonaError(f"Agent already registered: {agent_id}")
        self._personas[agent_id] = agent

    def remove_persona(self, agent_id: str) -> None:
        if agent_id not in self._personas:
            raise PersonaError(f"Unknown agent: {agent_id}")
        if agent_id == self._selected_id:
            raise PersonaError(f"Cannot remove the active agent: {agent_id}")
        del self._personas[agent_id]

    def select(self, agent_id: str) -> ChatAgent:
        if agent_id not in self._personas:
            raise PersonaError(f"Unknown agent: {agent_id}")
        self._selected_id = agent_id
        return self.current

    # ------------------------------------------------------------------
    # Conversation shortcuts on the active persona
    # ------------------------------------------------------------------

    @property
    def messages(self) -> list[Message]:
        return self.current.messages

    def reset_messages(self) -> None:
        self.current.reset_messages()

    def context_size(self) -> int:
        return self.current.context_size()

    def stop_stream(self) -> None:
        self.current.stop_stream()

    # ------------------------------------------------------------------
    # Turn
    # ------------------------------------------------------------------

    async def stream_turn(self, question: str, on_chunk: ChunkCallback) -> CompletionResult:
        """Run one full turn and stream the answer through on_chunk."""
        if self.before_turn:
            self.before_turn(self)

        if self.router:
            self.last_routing = await self.router.route(
                question, self._selected_id, self._personas
            )
            self._selected_id = self.last_routing.agent_id

        agent = self.current
        checkpoint = len(agent.conversation)
        pending = [*await self._retrieve(question), Message.user(question)]

        try:
            if self.tools is not None and len(self.tools):
                self.last_tool_result = await self._resolve_tools(agent, pending)
                pending = []
            result = await agent.stream_completion(pending, on_chunk)
        except BaseException:
            agent.conversation.truncate(checkpoint)
            raise

        if self.compactor:
            self.last_compaction = await self.compactor.compact_if_needed(agent)
            self.last_compaction_error = self.compactor.last_error

        if self.after_turn:
            self.after_turn(self)
        return result

    async def _retrieve(self, question: str) -> list[Message]:
        if self.retriever is None:
            return []
        try:
            snippets = await self.retriever(question)
        except Exception as e:
            logger.warning("Retrieval failed, answering without context: %s", e)
            return []
        if not snippets:
            logger.info("No relevant contexts found for the query")
            return []
        logger.debug("Injecting %d retrieved snippets", len(snippets))
        return [Message.system(CONTEXT_HEADER + CONTEXT_SEPARATOR.join(snippets))]

    async def _resolve_tools(self, agent: ChatAgent, pending: list[Message]) -> ToolCallResult:
        orchestrator = ToolCallOrchestrator(
            agent,
            self.tools,
            invoker=self.invoker,
            confirm=self.confirm,
            max_turns=self.max_turns,
            parallel=self.parallel_tool_calls,
            model=self.tool_model,
        )
        result = await orchestrator.resolve(pending)
        if result.stopped:
            logger.info("Tool resolution ended early (%s), answering anyway", result.stop_reason)
        elif result.results:
            logger.info("Resolved %d tool call(s) in %d round(s)", len(result.results), result.rounds)
        return result
