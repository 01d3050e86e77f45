"""Tool-call orchestration over a persona's conversation.

Three strategies share one execution core:

- run_once: a single completion; detected calls are executed once
- run_loop: completion -> calls -> results, repeated until the model
  answers without calls, a tool aborts, or max_turns is reached
- run_parallel: a single completion whose calls run concurrently

resolve() is the loop used by the Crew: it stops at the first call-free
completion without appending it so the answer can be streamed instead.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from dataclasses import dataclass, field

from chorus.api.agents import BaseAgent
from chorus.api.errors import ToolLoopAborted
from chorus.api.models import ApiResponse, ConfirmationDecision, Message, ModelConfig, ToolCall
from chorus.api.tools import Confirmer, Invoker, ToolRegistry

logger = logging.getLogger(__name__)

DENIED_PAYLOAD = json.dumps({"status": "denied", "message": "Tool execution was denied by user"})
ABORTED_PAYLOAD = json.dumps({"status": "aborted", "message": "Tool execution loop was stopped"})
EMPTY_RESULT_PAYLOAD = json.dumps({"error": "Function execution returned empty result"})

USER_QUIT = "user_quit"
EXIT_LOOP = "exit_loop"
MAX_TURNS = "max_turns"


# ---------------------------------------------------------------------------
# Step outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Continue:
    """The call produced content for the model (a real result or a denial)."""

    content: str


@dataclass(frozen=True)
class Stop:
    """Intentional early end of the orchestration."""

    reason: str


@dataclass(frozen=True)
class Fail:
    """Ordinary tool failure; serialized for the model, never raised."""

    error: BaseException

    @property
    def content(self) -> str:
        return json.dumps({"error": f"Function execution failed: {self.error}"})


StepOutcome = Continue | Stop | Fail


@dataclass
class ToolExecution:
    """Record of one tool call and what was sent back for it."""

    call: ToolCall
    outcome: StepOutcome
    content: str
    duration_ms: int = 0


@dataclass
class ToolCallResult:
    finish_reason: str = ""
    results: list[ToolExecution] = field(default_factory=list)
    last_assistant_message: Message | None = None
    stopped: bool = False
    stop_reason: str = ""
    rounds: int = 0  # backend round-trips

    @property
    def content(self) -> str:
        return self.last_assistant_message.content if self.last_assistant_message else ""


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class ToolCallOrchestrator:
    """Resolves tool calls against one agent's conversation.

    The invoker defaults to registry.invoke. The optional confirm callback
    gates every call; without it every call is approved.
    """

    def __init__(
        self,
        agent: BaseAgent,
        registry: ToolRegistry,
        invoker: Invoker | None = None,
        confirm: Confirmer | None = None,
        max_turns: int = 10,
        parallel: bool = False,
        model: ModelConfig | None = None,
    ) -> None:
        self.agent = agent
        self.registry = registry
        self.invoker = invoker or registry.invoke
        self.confirm = confirm
        self.max_turns = max_turns
        self.parallel = parallel
        self.model = model

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    async def run_once(self, new_messages: list[Message]) -> ToolCallResult:
        """One completion; execute its calls (if any) and stop."""
        return await self._run(new_messages, max_rounds=1, parallel=False, append_final=True)

    async def run_loop(self, new_messages: list[Message]) -> ToolCallResult:
        """Repeat until a call-free completion, which is appended."""
        return await self._run(
            new_messages, max_rounds=self.max_turns, parallel=self.parallel, append_final=True
        )

    async def run_parallel(self, new_messages: list[Message]) -> ToolCallResult:
        """Exactly one completion round; its calls are executed concurrently."""
        return await self._run(new_messages, max_rounds=1, parallel=True, append_final=True)

    async def resolve(self, new_messages: list[Message]) -> ToolCallResult:
        """Loop until no calls remain; the call-free completion is not appended."""
        return await self._run(
            new_messages, max_rounds=self.max_turns, parallel=self.parallel, append_final=False
        )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    async def _run(
        self,
        new_messages: list[Message],
        max_rounds: int,
        parallel: bool,
        append_final: bool,
    ) -> ToolCallResult:
        conversation = self.agent.conversation
        model = self.model or self.agent.model
        tools = self.registry.definitions() or None
        result = ToolCallResult()

        # Messages of a round are only kept once the whole round is appended
        checkpoint = len(conversation)
        conversation.extend(new_messages)

        while result.rounds < max_rounds:
            try:
                response = await self.agent.channel.complete(conversation.to_api(), model, tools=tools)
            except BaseException:
                conversation.truncate(checkpoint)
                raise
            result.rounds += 1
            result.finish_reason = response.finish_reason

            if not response.tool_calls:
                final = Message.assistant(response.content)
                result.last_assistant_message = final
                if append_final:
                    conversation.append(final)
                logger.debug(
                    "[%s] no tool calls after %d round(s)", self.agent.name, result.rounds
                )
                return result

            assistant = Message.assistant(response.content, response.tool_calls)
            result.last_assistant_message = assistant
            try:
                executions, stop = await self._execute_round(response, parallel)
            except BaseException:
                conversation.truncate(checkpoint)
                raise

            conversation.append(assistant)
            conversation.extend(Message.tool(e.call, e.content) for e in executions)
            checkpoint = len(conversation)
            result.results.extend(executions)

            if stop is not None:
                logger.info("[%s] tool orchestration stopped: %s", self.agent.name, stop.reason)
                result.stopped = True
                result.stop_reason = stop.reason
                return result

        if max_rounds > 1:
            logger.warning("Tool loop reached max_turns=%d", max_rounds)
            result.stopped = True
            result.stop_reason = MAX_TURNS
        return result

    async def _execute_round(
        self,
        response: ApiResponse,
        parallel: bool,
    ) -> tuple[list[ToolExecution], Stop | None]:
        """Confirm and execute every call of one completion, in backend order."""
        calls = response.tool_calls
        if parallel:
            return await self._execute_parallel(calls)
        return await self._execute_sequential(calls)

    async def _execute_sequential(
        self, calls: list[ToolCall]
    ) -> tuple[list[ToolExecution], Stop | None]:
        executions: list[ToolExecution] = []
        for index, call in enumerate(calls):
            decision = await self._confirm(call)
            if decision is ConfirmationDecision.ABORT_ALL:
                stop = Stop(USER_QUIT)
                executions.extend(self._halted(calls[index:], stop))
                return executions, stop

            execution = await self._execute(call, decision)
            executions.append(execution)
            if isinstance(execution.outcome, Stop):
                executions.extend(self._halted(calls[index + 1:], execution.outcome))
                return executions, execution.outcome
        return executions, None

    async def _execute_parallel(
        self, calls: list[ToolCall]
    ) -> tuple[list[ToolExecution], Stop | None]:
        # Confirmation is interactive, so it stays sequential; execution fans out
        decisions: list[ConfirmationDecision] = []
        stop: Stop | None = None
        for call in calls:
            decision = await self._confirm(call)
            if decision is ConfirmationDecision.ABORT_ALL:
                stop = Stop(USER_QUIT)
                break
            decisions.append(decision)

        approved = calls[: len(decisions)]
        executions = list(
            await asyncio.gather(*(self._execute(c, d) for c, d in zip(approved, decisions)))
        )
        if stop is not None:
            executions.extend(self._halted(calls[len(decisions):], stop))
            return executions, stop

        for execution in executions:
            if isinstance(execution.outcome, Stop):
                return executions, execution.outcome
        return executions, None

    async def _confirm(self, call: ToolCall) -> ConfirmationDecision:
        if self.confirm is None:
            return ConfirmationDecision.APPROVE
        decision = self.confirm(call.name, call.arguments)
        if inspect.isawaitable(decision):
            decision = await decision
        return decision

    async def _execute(self, call: ToolCall, decision: ConfirmationDecision) -> ToolExecution:
        if decision is ConfirmationDecision.DENY:
            logger.info("Tool %s denied by user", call.name)
            return ToolExecution(call, Continue(DENIED_PAYLOAD), DENIED_PAYLOAD)

        logger.info("Executing tool %s with %s", call.name, call.arguments)
        start_time = time.monotonic()
        outcome: StepOutcome
        try:
            content = await self.invoker(call.name, call.arguments)
            outcome = Continue(content or EMPTY_RESULT_PAYLOAD)
        except ToolLoopAborted as e:
            outcome = Stop(e.reason)
        except Exception as e:
            logger.warning("Tool %s failed: %s", call.name, e)
            outcome = Fail(e)
        duration_ms = int((time.monotonic() - start_time) * 1000)

        if isinstance(outcome, Stop):
            return ToolExecution(call, outcome, ABORTED_PAYLOAD, duration_ms)
        return ToolExecution(call, outcome, outcome.content, duration_ms)

    @staticmethod
    def _halted(calls: list[ToolCall], stop: Stop) -> list[ToolExecution]:
        """Placeholder results for calls left unprocessed by a stop."""
        payload = DENIED_PAYLOAD if stop.reason == USER_QUIT else ABORTED_PAYLOAD
        return [ToolExecution(call, stop, payload) for call in calls]
