"""Settings via pydantic-settings with CHORUS_ env prefix.

The API key reads the unprefixed OPENAI_API_KEY so the same .env file works
with any OpenAI-compatible engine (llama.cpp, Docker Model Runner, vLLM...).
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CHORUS_", env_file=".env")

    log_level: str = "info"

    # Inference engine
    engine_url: str = "http://localhost:12434/engines/llama.cpp/v1"
    api_key: str = Field("", validation_alias="OPENAI_API_KEY")
    model: str = "ai/qwen2.5:latest"
    temperature: float = 0.0
    max_tokens: int | None = None
    reasoning_effort: Literal["low", "medium", "high"] | None = None
    verify_model: bool = False  # List /models at startup and fail if absent

    # HTTP client
    api_timeout_connect: int = 10  # seconds
    api_timeout_read: int = 120  # seconds

    # Tool orchestration
    max_turns: int = 10  # Max tool rounds per orchestration
    parallel_tool_calls: bool = False

    # Context compaction
    compaction_enabled: bool = True
    context_size_limit: int = 8000  # chars, see Conversation.context_size()

    @model_validator(mode="after")
    def _validate_limits(self) -> Settings:
        if self.context_size_limit <= 0:
            raise ValueError("context_size_limit must be > 0")
        if not 0.0 <= self.temperature <= 2.0:
            raise ValueError(f"temperature must be within [0, 2], got {self.temperature}")
        if self.max_turns < 1:
            raise ValueError("max_turns must be >= 1")
        return self
