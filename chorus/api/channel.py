"""Completion channel -- one request/response exchange with the engine.

Talks to any OpenAI-compatible ``/chat/completions`` endpoint through
httpx, either as a single JSON response or as a server-sent event stream.
The channel never touches a conversation: agents own their history and
only append to it once the channel reports success.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from chorus.api.errors import BackendError, EmptyCompletionError, StreamCanceledError
from chorus.api.models import ApiResponse, CompletionResult, ModelConfig, StreamChunk, ToolCall
from chorus.config import Settings

logger = logging.getLogger(__name__)

# Callback invoked once per delivered chunk; may be sync or async.
ChunkCallback = Callable[[StreamChunk], Awaitable[None] | None]

END_OF_REASONING = "end_of_reasoning"


@dataclass
class StreamEvent:
    """A single parsed event from the SSE stream."""

    type: str  # delta, done, error
    content: str = ""
    reasoning: str = ""
    finish_reason: str = ""
    has_choices: bool = False
    text: str = ""  # error description


def _text(value: Any) -> str:
    # Non-string deltas (objects, numbers) are not text; ignore them
    return value if isinstance(value, str) else ""


def _reasoning_of(payload: dict[str, Any]) -> str:
    # llama.cpp and DeepSeek use reasoning_content, vLLM/OpenRouter use reasoning
    return _text(payload.get("reasoning_content")) or _text(payload.get("reasoning"))


def _parse_sse_event(data: Any) -> StreamEvent | None:
    """Parse one chat.completion.chunk payload into a StreamEvent.

    Returns None for keepalive payloads that carry nothing.
    In-stream errors arrive as HTTP 200 with an "error" object in the body.
    Payloads of the wrong shape become error events.
    """
    if not isinstance(data, dict):
        return StreamEvent(type="error", text=f"Malformed chunk: {str(data)[:200]}")

    if "error" in data:
        error = data.get("error") or {}
        if isinstance(error, dict):
            text = f"{error.get('type', 'unknown')}: {error.get('message', '')}"
        else:
            text = str(error)
        return StreamEvent(type="error", text=text)

    choices = data.get("choices")
    if not choices:
        return None
    if not isinstance(choices, list) or not isinstance(choices[0], dict):
        return StreamEvent(type="error", text=f"Malformed chunk choices: {str(choices)[:200]}")

    choice = choices[0]
    delta = choice.get("delta") or {}
    if not isinstance(delta, dict):
        return StreamEvent(type="error", text=f"Malformed chunk delta: {str(delta)[:200]}")
    return StreamEvent(
        type="delta",
        content=_text(delta.get("content")),
        reasoning=_reasoning_of(delta),
        finish_reason=_text(choice.get("finish_reason")),
        has_choices=True,
    )


def _parse_tool_calls(raw: Any) -> list[ToolCall]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise BackendError(f"Malformed tool_calls: {str(raw)[:200]}")
    calls = []
    for item in raw:
        function = item.get("function") if isinstance(item, dict) else None
        if not isinstance(function, dict):
            raise BackendError(f"Malformed tool call: {str(item)[:200]}")
        arguments = function.get("arguments")
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments or {})
        calls.append(ToolCall(id=item.get("id", ""), name=function.get("name", ""), arguments=arguments))
    return calls


def normalize_model_name(name: str) -> str:
    """Strip the docker.io/ prefix and a :latest suffix; other tags are kept."""
    if name.startswith("docker.io/"):
        name = name[len("docker.io/"):]
    if name.endswith(":latest"):
        name = name[: -len(":latest")]
    return name


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    """httpx client for the engine; may be shared by several channels."""
    headers = {"content-type": "application/json"}
    if settings.api_key:
        headers["authorization"] = f"Bearer {settings.api_key}"

    timeout = httpx.Timeout(
        connect=settings.api_timeout_connect,
        read=settings.api_timeout_read,
        write=10.0,
        pool=10.0,
    )
    client = httpx.AsyncClient(
        base_url=settings.engine_url.rstrip("/"),
        headers=headers,
        timeout=timeout,
    )
    logger.info("httpx client initialized for %s", settings.engine_url)
    return client


async def _deliver(callback: ChunkCallback, chunk: StreamChunk) -> None:
    result = callback(chunk)
    if inspect.isawaitable(result):
        await result


class CompletionChannel:
    """Streaming and non-streaming chat completions over httpx.

    Cancellation is cooperative and scoped to this instance: stop_stream()
    sets a flag that is checked before each chunk is delivered.
    """

    def __init__(self, settings: Settings, http: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._http = http
        self._owns_http = http is None
        self._canceled = False
        self.last_request: dict[str, Any] | None = None
        self.last_response: dict[str, Any] | None = None

    async def start(self) -> None:
        """Initialize the httpx client unless one was injected."""
        if self._http is not None:
            return
        self._http = build_http_client(self._settings)
        self._owns_http = True

    async def close(self) -> None:
        """Clean up the httpx client if this channel created it."""
        if self._http and self._owns_http:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> CompletionChannel:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _client(self) -> httpx.AsyncClient:
        if not self._http:
            raise RuntimeError("httpx client not initialized -- call start() first")
        return self._http

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def stop_stream(self) -> None:
        """Ask the in-flight stream to stop before its next chunk."""
        self._canceled = True

    @property
    def canceled(self) -> bool:
        return self._canceled

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _build_payload(
        self,
        messages: list[dict[str, Any]],
        model: ModelConfig,
        tools: list[dict[str, Any]] | None = None,
        response_format: dict[str, Any] | None = None,
        stream: bool = False,
    ) -> dict[str, Any]:
        """Build the request payload shared by complete() and stream()."""
        payload = model.to_params()
        payload["messages"] = messages
        if tools:
            payload["tools"] = tools
            if model.parallel_tool_calls is not None:
                payload["parallel_tool_calls"] = model.parallel_tool_calls
        if response_format:
            payload["response_format"] = response_format
        if stream:
            payload["stream"] = True
        self.last_request = payload
        logger.debug("Request sent: %s", json.dumps(payload, ensure_ascii=False))
        return payload

    async def complete(
        self,
        messages: list[dict[str, Any]],
        model: ModelConfig,
        tools: list[dict[str, Any]] | None = None,
        response_format: dict[str, Any] | None = None,
    ) -> ApiResponse:
        """Run one non-streaming completion and return its first choice.

        Raises BackendError on transport or HTTP errors and on malformed
        bodies, EmptyCompletionError when the response has no choices.
        No retry: a failed step fails the caller.
        """
        payload = self._build_payload(messages, model, tools, response_format)

        try:
            response = await self._client().post("/chat/completions", json=payload)
        except httpx.HTTPError as e:
            logger.error("Completion request failed: %s", e)
            raise BackendError(f"HTTP error: {e}") from e

        if response.status_code != 200:
            raise BackendError(
                f"Engine error ({response.status_code}): {response.text[:500]}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise BackendError(f"Malformed completion body: {response.text[:200]}") from e

        self.last_response = data
        logger.debug("Response received: %s", response.text)

        if not isinstance(data, dict):
            raise BackendError("Malformed completion body: expected a JSON object")
        if "error" in data:
            raise BackendError(f"Engine error: {data['error']}")

        choices = data.get("choices") or []
        if not isinstance(choices, list):
            raise BackendError(f"Malformed completion choices: {str(choices)[:200]}")
        if not choices:
            raise EmptyCompletionError("no choices found")

        choice = choices[0]
        if not isinstance(choice, dict):
            raise BackendError(f"Malformed completion choice: {str(choice)[:200]}")
        message = choice.get("message") or {}
        if not isinstance(message, dict):
            raise BackendError(f"Malformed completion message: {str(message)[:200]}")
        usage = data.get("usage")
        return ApiResponse(
            content=_text(message.get("content")),
            finish_reason=_text(choice.get("finish_reason")),
            tool_calls=_parse_tool_calls(message.get("tool_calls")),
            reasoning=_reasoning_of(message),
            usage=usage if isinstance(usage, dict) else None,
        )

    async def _call_api_stream(
        self,
        messages: list[dict[str, Any]],
        model: ModelConfig,
    ) -> AsyncGenerator[StreamEvent, None]:
        """Yield StreamEvents from the SSE response.

        Only processes data: lines; the [DONE] sentinel ends the stream.
        """
        payload = self._build_payload(messages, model, stream=True)

        try:
            async with self._client().stream("POST", "/chat/completions", json=payload) as response:
                if response.status_code != 200:
                    error_body = await response.aread()
                    yield StreamEvent(
                        type="error",
                        text=f"HTTP {response.status_code}: {error_body.decode(errors='replace')[:500]}",
                    )
                    return

                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    raw = line[5:].strip()
                    if raw == "[DONE]":
                        break
                    try:
                        data = json.loads(raw)
                    except json.JSONDecodeError:
                        yield StreamEvent(type="error", text=f"Malformed chunk: {raw[:200]}")
                        return
                    event = _parse_sse_event(data)
                    if event is None:
                        continue
                    if event.finish_reason:
                        self.last_response = data
                    yield event
                    if event.type == "error":
                        return
        except httpx.HTTPError as e:
            yield StreamEvent(type="error", text=f"HTTP error: {e}")

    async def stream(
        self,
        messages: list[dict[str, Any]],
        model: ModelConfig,
        on_chunk: ChunkCallback,
    ) -> CompletionResult:
        """Stream a completion, delivering chunks to on_chunk in arrival order.

        Reasoning deltas are delivered first; the first content chunk that
        follows reasoning is preceded by exactly one end_of_reasoning marker.
        A final chunk with empty content carries the finish reason.

        Raises StreamCanceledError if stop_stream() was called, BackendError
        on transport or in-stream errors, and re-raises whatever on_chunk
        raises. Partial content is discarded on every failure path.
        """
        self._canceled = False

        content_parts: list[str] = []
        reasoning_parts: list[str] = []
        finish_reason = ""
        saw_choices = False
        reasoning_ended = False

        events = self._call_api_stream(messages, model)
        try:
            async for event in events:
                if self._canceled:
                    logger.info("Stream canceled after %d content chunks", len(content_parts))
                    raise StreamCanceledError()

                if event.type == "error":
                    logger.error("Stream error: %s", event.text)
                    raise BackendError(event.text)

                saw_choices = saw_choices or event.has_choices
                if event.finish_reason:
                    finish_reason = event.finish_reason

                if event.reasoning:
                    reasoning_parts.append(event.reasoning)
                    await _deliver(on_chunk, StreamChunk(reasoning=event.reasoning))

                if event.content:
                    if reasoning_parts and not reasoning_ended:
                        reasoning_ended = True
                        await _deliver(
                            on_chunk,
                            StreamChunk(finish_reason=END_OF_REASONING, end_of_reasoning=True),
                        )
                    content_parts.append(event.content)
                    await _deliver(on_chunk, StreamChunk(content=event.content))
        finally:
            await events.aclose()

        if not saw_choices:
            raise EmptyCompletionError("no choices found")

        if self._canceled:
            raise StreamCanceledError()

        if finish_reason:
            await _deliver(on_chunk, StreamChunk(finish_reason=finish_reason))

        return CompletionResult(
            content="".join(content_parts),
            finish_reason=finish_reason,
            reasoning="".join(reasoning_parts),
        )

    async def verify_model(self, name: str) -> None:
        """Check that the engine serves `name`; raises BackendError otherwise."""
        try:
            response = await self._client().get("/models")
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Error listing models: %s", e)
            raise BackendError(f"Could not list models: {e}") from e

        wanted = normalize_model_name(name)
        for entry in data.get("data", []):
            model_id = entry.get("id", "")
            logger.debug("Comparing model %s with %s", normalize_model_name(model_id), wanted)
            if normalize_model_name(model_id) == wanted:
                logger.info("Model %s is available on %s", name, self._settings.engine_url)
                return

        raise BackendError(f"Model not available on the engine: {name} (normalized: {wanted})")
