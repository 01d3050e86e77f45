"""Chorus runtime -- personas, tool orchestration, routing and compaction.

Public API:
    CompletionChannel  - streaming / non-streaming chat completions
    ChatAgent, StructuredAgent, CompressorAgent - agent kinds
    ToolRegistry, Tool - tool declarations and dispatch
    ToolCallOrchestrator - run_once / run_loop / run_parallel / resolve
    ContextCompactor   - summarizes oversized conversations
    AgentRouter, RoutingTable, Intent - topic routing
    Crew               - the per-turn pipeline over a persona registry
"""

from chorus.api.agents import ChatAgent, CompressionPrompts, CompressorAgent, StructuredAgent
from chorus.api.channel import CompletionChannel
from chorus.api.compaction import ContextCompactor
from chorus.api.crew import Crew
from chorus.api.errors import (
    BackendError,
    ChorusError,
    EmptyCompletionError,
    PersonaError,
    StreamCanceledError,
    ToolLoopAborted,
)
from chorus.api.models import (
    CompactionEvent,
    CompletionResult,
    ConfirmationDecision,
    Conversation,
    Message,
    ModelConfig,
    Role,
    RoutingDecision,
    StreamChunk,
    ToolCall,
)
from chorus.api.orchestrator import Continue, Fail, Stop, ToolCallOrchestrator, ToolCallResult
from chorus.api.router import AgentRouter, Intent, RoutingTable
from chorus.api.tools import Tool, ToolDefinition, ToolParameter, ToolRegistry

__all__ = [
    "AgentRouter",
    "BackendError",
    "ChatAgent",
    "ChorusError",
    "CompactionEvent",
    "CompletionChannel",
    "CompletionResult",
    "CompressionPrompts",
    "CompressorAgent",
    "ConfirmationDecision",
    "ContextCompactor",
    "Continue",
    "Conversation",
    "Crew",
    "EmptyCompletionError",
    "Fail",
    "Intent",
    "Message",
    "ModelConfig",
    "PersonaError",
    "Role",
    "RoutingDecision",
    "RoutingTable",
    "Stop",
    "StreamCanceledError",
    "StreamChunk",
    "StructuredAgent",
    "Tool",
    "ToolCall",
    "ToolCallOrchestrator",
    "ToolCallResult",
    "ToolDefinition",
    "ToolLoopAborted",
    "ToolParameter",
    "ToolRegistry",
]
