"""Chorus composition root.

Builds every component from Settings in dependency order:
  Settings -> httpx client -> persona agents -> router -> compactor -> Crew

All agents share one httpx client but each owns its CompletionChannel, so
cancellation stays scoped to the persona that is streaming.
"""

from __future__ import annotations

import logging

from chorus.api.agents import ChatAgent, CompressorAgent, StructuredAgent
from chorus.api.channel import CompletionChannel, build_http_client
from chorus.api.compaction import ContextCompactor
from chorus.api.crew import Crew, Retriever
from chorus.api.router import CLASSIFIER_INSTRUCTIONS, AgentRouter, Intent, RoutingTable
from chorus.api.tools import Confirmer, Invoker, ToolRegistry
from chorus.config import Settings

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )


async def create_components(
    settings: Settings,
    personas: dict[str, str],
    selected_id: str,
    routing: RoutingTable | None = None,
    tools: ToolRegistry | None = None,
    invoker: Invoker | None = None,
    confirm: Confirmer | None = None,
    retriever: Retriever | None = None,
) -> dict:
    """Initialize all components and start them.

    `personas` maps agent ids to system instructions. Returns a dict with
    the components for shutdown_components().
    """
    http = build_http_client(settings)

    agents = {
        agent_id: ChatAgent(
            agent_id,
            settings,
            system_instructions=instructions,
            channel=CompletionChannel(settings, http),
        )
        for agent_id, instructions in personas.items()
    }

    router = None
    if routing is not None:
        classifier = StructuredAgent(
            "classifier",
            settings,
            Intent,
            system_instructions=CLASSIFIER_INSTRUCTIONS,
            channel=CompletionChannel(settings, http),
        )
        router = AgentRouter(classifier, routing)

    compactor = None
    if settings.compaction_enabled:
        compressor = CompressorAgent(
            "compressor", settings, channel=CompletionChannel(settings, http)
        )
        compactor = ContextCompactor(compressor, settings.context_size_limit)

    crew = Crew(
        agents,
        selected_id,
        router=router,
        tools=tools,
        invoker=invoker,
        confirm=confirm,
        compactor=compactor,
        retriever=retriever,
        max_turns=settings.max_turns,
        parallel_tool_calls=settings.parallel_tool_calls,
    )
    await crew.start()

    logger.info(
        "Chorus started: %d persona(s), router=%s, tools=%d, compaction=%s",
        len(agents),
        router is not None,
        len(tools) if tools else 0,
        compactor is not None,
    )
    return {"http": http, "crew": crew, "router": router, "compactor": compactor}


async def shutdown_components(components: dict) -> None:
    """Graceful shutdown in reverse order."""
    crew = components.get("crew")
    if crew:
        await crew.close()

    http = components.get("http")
    if http:
        await http.aclose()

    logger.info("Chorus shutdown complete.")
