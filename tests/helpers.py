"""Response builders shared by the test modules."""

import json

from chorus.api.channel import _deliver
from chorus.api.models import ApiResponse, CompletionResult, StreamChunk, ToolCall


def api_response(
    content: str = "",
    finish_reason: str = "stop",
    calls: list[tuple[str, str, dict]] | None = None,
) -> ApiResponse:
    """ApiResponse with optional (id, name, arguments) tool calls."""
    tool_calls = [ToolCall(id=i, name=n, arguments=json.dumps(a)) for i, n, a in calls or []]
    if tool_calls:
        finish_reason = "tool_calls"
    return ApiResponse(content=content, finish_reason=finish_reason, tool_calls=tool_calls)


def fake_stream(*parts: str, finish_reason: str = "stop"):
    """Replacement for CompletionChannel.stream delivering `parts` as content."""

    async def _stream(messages, model, on_chunk):
        for part in parts:
            await _deliver(on_chunk, StreamChunk(content=part))
        await _deliver(on_chunk, StreamChunk(finish_reason=finish_reason))
        return CompletionResult(content="".join(parts), finish_reason=finish_reason)

    return _stream


def sse_body(*payloads: dict, done: bool = True) -> str:
    """Server-sent event body: one data: line per payload, then [DONE]."""
    lines = [f"data: {json.dumps(p)}\n\n" for p in payloads]
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines)


def delta(content: str = "", reasoning: str = "", finish_reason: str | None = None) -> dict:
    """One chat.completion.chunk payload."""
    d: dict = {}
    if content:
        d["content"] = content
    if reasoning:
        d["reasoning_content"] = reasoning
    return {
        "object": "chat.completion.chunk",
        "choices": [{"index": 0, "delta": d, "finish_reason": finish_reason}],
    }
