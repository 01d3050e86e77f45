"""Shared fixtures: settings isolated from the environment and engine mocks.

Wire-level tests run the real CompletionChannel against httpx.MockTransport;
higher layers mock CompletionChannel.complete / stream with AsyncMock.
"""

from collections.abc import Callable

import httpx
import pytest

from chorus.api.agents import ChatAgent
from chorus.api.channel import CompletionChannel
from chorus.config import Settings

ENGINE_URL = "http://engine.test/v1"


@pytest.fixture
def settings():
    """Settings that ignore any local .env file."""
    return Settings(
        _env_file=None,
        OPENAI_API_KEY="test-key",
        engine_url=ENGINE_URL,
        model="test-model",
        max_turns=5,
        context_size_limit=200,
    )


@pytest.fixture
def make_channel(settings) -> Callable[[Callable[[httpx.Request], httpx.Response]], CompletionChannel]:
    """Build a CompletionChannel whose client talks to a MockTransport handler."""

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> CompletionChannel:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=ENGINE_URL)
        return CompletionChannel(settings, client)

    return _make


@pytest.fixture
def make_agent(settings) -> Callable[..., ChatAgent]:
    """ChatAgent with an unstarted channel; tests mock its I/O."""

    def _make(name: str = "bob", instructions: str = "You are Bob.", **kwargs) -> ChatAgent:
        return ChatAgent(name, settings, system_instructions=instructions, **kwargs)

    return _make
