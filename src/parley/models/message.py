"""Core message, context and stream result models for Parley."""

from __future__ import annotations

import time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant", "system"]

MessageStatus = Literal["sending", "streaming", "sent", "error", "retrying", "cancelled"]

StreamStatus = Literal["streaming", "sent", "error", "retrying", "cancelled"]

# ── Messages ───────────────────────────────────────────────────────────────────


class Attachment(BaseModel):
    """
    Reference to an uploaded file.

    Opaque to budgeting: attachments ride along with user messages and are
    never counted against the token budget. Unknown keys from the upload
    service are preserved.
    """

    model_config = ConfigDict(extra="allow")

    name: str
    url: str
    content_type: str = "application/octet-stream"
    size: int = 0


class Message(BaseModel):
    """
    A single conversation message as held by the caller.

    Messages are treated as immutable values: the controller replaces a
    message with :meth:`with_update` rather than mutating it.
    """

    id: str
    role: Role
    content: str = ""
    attachments: list[Attachment] = Field(default_factory=list)
    status: MessageStatus = "sent"
    is_streaming: bool = False
    retry_count: int = 0
    error_message: str | None = None
    """User-facing failure text when ``status == "error"``."""
    created_at: int = Field(default_factory=lambda: int(time.time() * 1000))
    """Unix millisecond timestamp."""

    @property
    def is_user(self) -> bool:
        return self.role == "user"

    def with_update(self, **changes: Any) -> Message:
        return self.model_copy(update=changes)


class PreparedMessage(BaseModel):
    """A role/content pair selected for the outbound context payload."""

    role: Role
    content: str
    attachments: list[Attachment] = Field(default_factory=list)
    token_count: int = 0
    is_original: bool = True
    """False when the content was truncated or synthesized to fit the budget."""
    is_summary: bool = False
    """True for the placeholder standing in for excluded messages."""

    def to_payload(self) -> dict[str, Any]:
        """Render as a ``{role, content, attachments?}`` request entry."""
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.attachments:
            payload["attachments"] = [a.model_dump() for a in self.attachments]
        return payload


# ── Context statistics ─────────────────────────────────────────────────────────


class ContextStats(BaseModel):
    """Budgeting outcome of one ``prepare_context`` call."""

    total_tokens: int
    messages_included: int
    messages_excluded: int
    messages_summarized: int
    has_reached_limit: bool


class ContextInfo(BaseModel):
    """Utilization of an already prepared message list."""

    total_tokens: int
    utilization: float
    """Percent of ``max_tokens``."""
    remaining_tokens: int
    can_fit_more: bool


class ContextWindowReport(BaseModel):
    """Conversation-level utilization summary suitable for display."""

    stats: ContextStats | None
    utilization: float
    remaining_tokens: int
    can_fit_more: bool
    is_near_limit: bool
    should_suggest_new_conversation: bool
    recommendation: str


# ── Streaming ──────────────────────────────────────────────────────────────────


class StreamFailure(BaseModel):
    """Classified failure of a streaming attempt."""

    kind: Literal["rate_limit", "timeout", "network", "auth", "bad_request", "unavailable", "unknown"]
    transient: bool
    user_message: str
    detail: str = ""
    """Raw error text, for logs only."""


class MessageUpdate(BaseModel):
    """One mutation handed to the caller: replace message ``message_id``."""

    message_id: str
    content: str
    status: StreamStatus
    error_message: str | None = None
    retry_attempt: int | None = None
    retry_total: int | None = None


class StreamResult(BaseModel):
    """Terminal outcome of ``StreamingPipeline.send()``."""

    message_id: str
    content: str
    status: StreamStatus
    error: StreamFailure | None = None
    attempts: int = 1
