"""Typed payload definitions for each ParleyEvent.

Usage example::

    from parley.events.bus import EventBus, ParleyEvent
    from parley.events.payloads import StreamRetryingPayload

    def on_retry(event: ParleyEvent, payload: StreamRetryingPayload) -> None:
        print(f"retrying ({payload['retry_attempt']}/{payload['retry_total']})")

    bus.subscribe(ParleyEvent.STREAM_RETRYING, on_retry)  # type: ignore[arg-type]
"""

from __future__ import annotations

from typing import NotRequired, TypedDict

# ── Context budgeting ─────────────────────────────────────────────────────────


class ContextPreparedPayload(TypedDict):
    """Payload for ``CONTEXT_PREPARED`` and ``CONTEXT_LIMIT_REACHED``."""

    model: str
    total_tokens: int
    messages_included: int
    messages_excluded: int
    messages_summarized: int
    has_reached_limit: bool


# ── Stream lifecycle ──────────────────────────────────────────────────────────


class StreamLifecyclePayload(TypedDict):
    """Payload for ``STREAM_STARTED``, ``STREAM_COMPLETED`` and ``STREAM_CANCELLED``."""

    message_id: str
    attempt: int
    content_length: int


class StreamRetryingPayload(TypedDict):
    """Payload for ``STREAM_RETRYING``."""

    message_id: str
    retry_attempt: int
    """1-based index of the retry about to run."""
    retry_total: int
    kind: str
    """Failure kind that triggered the retry, e.g. ``"rate_limit"``."""


class StreamFailedPayload(TypedDict):
    """Payload for ``STREAM_FAILED``."""

    message_id: str
    attempts: int
    kind: str
    error: str


# ── Conversation ──────────────────────────────────────────────────────────────


class MessageCreatedPayload(TypedDict):
    """Payload for ``MESSAGE_CREATED``."""

    message_id: str
    role: str
    conversation_id: str


# ── Memory ────────────────────────────────────────────────────────────────────


class MemoryPayload(TypedDict):
    """Payload for ``MEMORY_ADDED`` and ``MEMORY_FAILED``."""

    user_id: str
    conversation_id: str
    memory_id: NotRequired[str | None]
    error: NotRequired[str]
