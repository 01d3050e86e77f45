"""Context compaction -- keeps a persona's history within a size budget.

When the conversation grows past the threshold, the full history is handed
to a CompressorAgent and replaced by a single system message holding the
persona instructions and the summary. Compaction is fail-open: a failure
leaves the conversation as it was. The exception is logged and kept on
`last_error`.

This module is independent of the Crew to avoid circular imports.
"""

from __future__ import annotations

import logging
import time

from chorus.api.agents import BaseAgent, CompressorAgent
from chorus.api.models import CompactionEvent

logger = logging.getLogger(__name__)

# Post-compaction size above this share of the threshold gets a warning
RESIDUAL_WARNING_RATIO = 0.8


class ContextCompactor:
    """Summarizes an agent's conversation once it exceeds `threshold` chars."""

    def __init__(self, compressor: CompressorAgent, threshold: int) -> None:
        if threshold <= 0:
            raise ValueError("threshold must be > 0")
        self.compressor = compressor
        self.threshold = threshold
        self.last_error: Exception | None = None

    @staticmethod
    def context_size(agent: BaseAgent) -> int:
        return agent.context_size()

    def should_compact(self, agent: BaseAgent) -> bool:
        return self.context_size(agent) > self.threshold

    async def compact_if_needed(self, agent: BaseAgent) -> CompactionEvent | None:
        """Compact only above the threshold; a no-op otherwise."""
        self.last_error = None
        size = self.context_size(agent)
        if size <= self.threshold:
            return None
        logger.info(
            "[%s] context size %d exceeds %d, compacting", agent.name, size, self.threshold
        )
        return await self.compact(agent)

    async def compact(self, agent: BaseAgent) -> CompactionEvent | None:
        """Unconditionally replace the history with its summary.

        Returns None when summarization fails; the conversation is untouched
        and the exception is kept on `last_error`.
        """
        self.last_error = None
        pre_size = self.context_size(agent)
        start_time = time.monotonic()

        try:
            summary = await self.compressor.compress(agent.messages)
        except Exception as e:
            logger.warning("[%s] compaction failed, keeping history: %s", agent.name, e)
            self.last_error = e
            return None

        message_count = len(agent.conversation)
        agent.conversation.install_summary(summary)
        post_size = self.context_size(agent)

        duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            "[%s] compacted %d messages: %d -> %d chars (%d ms)",
            agent.name,
            message_count,
            pre_size,
            post_size,
            duration_ms,
        )
        if post_size > self.threshold * RESIDUAL_WARNING_RATIO:
            logger.warning(
                "[%s] context still large after compaction: %d chars (threshold %d)",
                agent.name,
                post_size,
                self.threshold,
            )
        return CompactionEvent(threshold=self.threshold, pre_size=pre_size, post_size=post_size)
