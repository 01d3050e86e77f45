"""Agent router -- picks the persona that answers a turn.

A StructuredAgent classifies the user's text into a one-word topic
({"topic_discussion": ...}); a RoutingTable maps topics to persona ids.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from chorus.api.agents import BaseAgent, StructuredAgent
from chorus.api.errors import ChorusError, PersonaError
from chorus.api.models import Message, RoutingDecision

logger = logging.getLogger(__name__)

CLASSIFIER_INSTRUCTIONS = (
    "You are good at identifying the topic of a conversation. Given a user's input, "
    "identify the main topic of discussion in only one word. "
    "The possible topics depend on the user's question."
)


class Intent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    topic_discussion: str


class Route(BaseModel):
    topics: list[str]
    agent: str


class RoutingTable(BaseModel):
    """Topic lists mapped to persona ids, with a default fallback."""

    routing: list[Route] = Field(default_factory=list)
    default_agent: str

    @classmethod
    def from_file(cls, path: str | Path) -> RoutingTable:
        return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))

    def agent_for(self, topic: str) -> str:
        """Case-insensitive lookup; the first matching route wins."""
        wanted = topic.strip().lower()
        for route in self.routing:
            if any(t.lower() == wanted for t in route.topics):
                return route.agent
        return self.default_agent

    def agent_ids(self) -> set[str]:
        return {r.agent for r in self.routing} | {self.default_agent}


class AgentRouter:
    """Classifies topics and hands the conversation over between personas."""

    def __init__(self, classifier: StructuredAgent[Intent], table: RoutingTable) -> None:
        self.classifier = classifier
        self.table = table

    async def detect_topic(self, text: str) -> str:
        intent = await self.classifier.generate([Message.user(text)])
        return intent.topic_discussion

    async def route(
        self,
        text: str,
        current_id: str,
        personas: dict[str, BaseAgent],
    ) -> RoutingDecision:
        """Select the persona for `text`, transferring history on a change.

        Classification failures fall back to the default persona; they never
        abort the turn. An unknown target id also falls back to the default.
        """
        try:
            topic = await self.detect_topic(text)
        except ChorusError as e:
            logger.warning("Topic detection failed, using default agent: %s", e)
            topic = ""

        agent_id = self.table.agent_for(topic) if topic else self.table.default_agent
        if agent_id not in personas:
            logger.warning("Routing table names unknown agent %s, using default", agent_id)
            agent_id = self.table.default_agent
        if agent_id not in personas:
            raise PersonaError(f"Default agent not registered: {agent_id}")

        logger.info("Topic %r routed to %s", topic, agent_id)

        if agent_id != current_id and current_id in personas:
            history = personas[current_id].conversation.transferable()
            personas[agent_id].add_messages(history)
            logger.info(
                "Handed off %d messages from %s to %s", len(history), current_id, agent_id
            )

        return RoutingDecision(agent_id=agent_id, topic=topic)
