"""Completion backend that renders a litellm stream as response frames."""

from __future__ import annotations

import json
import os
from collections.abc import AsyncIterator, Sequence
from typing import Any

import structlog

from parley.streaming.frames import CONTENT_PREFIX, END_PREFIX

DEFAULT_COMPLETION_MODEL = "gemini/gemini-1.5-flash"

_logger = structlog.get_logger("parley.backend")


def encode_content_frame(text: str) -> str:
    """Encode a token fragment as a ``0:"<json string>"`` line."""
    return f"{CONTENT_PREFIX}{json.dumps(text)}\n"


def encode_end_frame(finish_reason: str = "stop", usage: dict[str, int] | None = None) -> str:
    """Encode the terminating ``e:{...}`` line."""
    payload: dict[str, Any] = {"finishReason": finish_reason}
    if usage:
        payload["usage"] = usage
    return f"{END_PREFIX}{json.dumps(payload)}\n"


async def completion_frames(
    messages: Sequence[dict[str, Any]],
    *,
    model: str = DEFAULT_COMPLETION_MODEL,
    temperature: float = 0.7,
    max_tokens: int = 2048,
) -> AsyncIterator[str]:
    """
    Stream a chat completion as response-body lines.

    Each text delta becomes one content frame; a single end frame carrying
    the finish reason and usage closes the stream. Provider errors propagate
    to the caller (the hosting route turns them into an HTTP error status).

    Set ``PARLEY_MOCK_LLM=1`` to stream a canned reply without an API key.

    Args:
        messages: ``{role, content}`` dicts, as received in the request body.
        model: LLM model string in litellm format.
        temperature: Sampling temperature.
        max_tokens: Output token cap.

    Yields:
        Newline-terminated frame lines.
    """
    if os.environ.get("PARLEY_MOCK_LLM") == "1":
        async for line in _mock_frames(messages):
            yield line
        return

    import litellm

    finish_reason = "stop"
    usage: dict[str, int] = {}
    fragments = 0

    async for chunk in await litellm.acompletion(
        model=model,
        messages=[{"role": m["role"], "content": m["content"]} for m in messages],
        temperature=temperature,
        max_tokens=max_tokens,
        stream=True,
    ):
        choice = chunk.choices[0] if chunk.choices else None
        if choice is not None:
            delta = choice.delta
            if delta is not None and delta.content:
                fragments += 1
                yield encode_content_frame(delta.content)
            if choice.finish_reason:
                finish_reason = choice.finish_reason

        chunk_usage = getattr(chunk, "usage", None)
        if chunk_usage:
            usage = {
                "promptTokens": getattr(chunk_usage, "prompt_tokens", 0) or 0,
                "completionTokens": getattr(chunk_usage, "completion_tokens", 0) or 0,
            }

    _logger.debug("completion_streamed", model=model, fragments=fragments, finish_reason=finish_reason)
    yield encode_end_frame(finish_reason, usage or None)


async def _mock_frames(messages: Sequence[dict[str, Any]]) -> AsyncIterator[str]:
    """Canned streaming reply for demonstrations and tests."""
    last_user = next(
        (str(m["content"]) for m in reversed(messages) if m["role"] == "user"),
        "Hello",
    )
    reply = (
        f"[Mock response to: {last_user[:100]}]\n"
        "This is a simulated response. Unset PARLEY_MOCK_LLM to use a real model."
    )
    for word in reply.split(" "):
        yield encode_content_frame(word + " ")
    yield encode_end_frame("stop")
