"""Configuration models for Parley context budgeting and streaming."""

from __future__ import annotations

import structlog
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_CONTEXT_MODEL = "gemini-1.5-flash"


class ContextConfig(BaseModel):
    """
    Per-model context window policy.

    Instances are frozen so one config value can be shared by concurrent
    ``prepare_context`` calls. Derive a variant with :meth:`with_overrides`.

    The defaults are the documented fallback for model names missing from
    :data:`MODEL_CONTEXT_CONFIGS`.
    """

    model_config = ConfigDict(frozen=True)

    max_tokens: int = Field(
        default=4_000,
        ge=1,
        description="Token budget for one outbound context payload.",
    )

    tokens_per_char: float = Field(
        default=0.25,
        gt=0,
        description="Heuristic estimator ratio: tokens = ceil(len(text) * tokens_per_char).",
    )

    min_messages_included: int = Field(
        default=4,
        ge=0,
        description=(
            "Floor of non-system history messages. Below it, the first message that "
            "does not fit is truncated and force-included instead of excluded."
        ),
    )

    preserve_system_messages: bool = True
    """Pin system-role history messages ahead of the recency walk."""

    prioritize_recent_messages: bool = True
    """Walk history newest to oldest. The only supported selection mode."""

    summarize_older_messages: bool = False
    """Insert a placeholder summary for excluded messages when it fits."""

    @classmethod
    def for_model(cls, model: str) -> ContextConfig:
        """
        Look up the config registered for ``model`` by exact name.

        Unknown names fall back to ``ContextConfig()`` rather than failing.
        """
        config = MODEL_CONTEXT_CONFIGS.get(model)
        if config is None:
            structlog.get_logger("parley.config").info("unknown_context_model", model=model)
            return cls()
        return config

    def with_overrides(self, **changes: object) -> ContextConfig:
        """Return a validated copy with ``changes`` applied."""
        return ContextConfig.model_validate({**self.model_dump(), **changes})


MODEL_CONTEXT_CONFIGS: dict[str, ContextConfig] = {
    "gemini-1.5-flash": ContextConfig(
        max_tokens=1_000_000,
        tokens_per_char=0.25,
        min_messages_included=10,
        summarize_older_messages=False,
    ),
    "gemini-1.5-pro": ContextConfig(
        max_tokens=2_000_000,
        tokens_per_char=0.25,
        min_messages_included=20,
        summarize_older_messages=False,
    ),
    "gpt-3.5-turbo": ContextConfig(
        max_tokens=4_096,
        tokens_per_char=0.25,
        min_messages_included=4,
        summarize_older_messages=True,
    ),
    "gpt-4": ContextConfig(
        max_tokens=8_192,
        tokens_per_char=0.25,
        min_messages_included=6,
        summarize_older_messages=True,
    ),
    "claude-3-haiku": ContextConfig(
        max_tokens=200_000,
        tokens_per_char=0.25,
        min_messages_included=15,
        summarize_older_messages=False,
    ),
    "claude-3-sonnet": ContextConfig(
        max_tokens=200_000,
        tokens_per_char=0.25,
        min_messages_included=15,
        summarize_older_messages=False,
    ),
}
"""Static registry consulted by exact model-name key."""


class RetryPolicy(BaseModel):
    """Bounded fixed-delay retry for transient streaming failures."""

    model_config = ConfigDict(frozen=True)

    retry_attempts: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Retries after the first attempt. 0 disables retrying.",
    )

    retry_delay: float = Field(
        default=0.5,
        ge=0.0,
        description="Seconds to wait before each retry.",
    )

    timeout: float = Field(
        default=20.0,
        gt=0.0,
        description="Seconds allowed for the request to produce a response.",
    )


MANUAL_RETRY_POLICY = RetryPolicy(retry_attempts=2, retry_delay=0.5, timeout=30.0)
"""Policy used when the user explicitly retries a failed response."""

SEND_RETRY_POLICY = RetryPolicy(retry_attempts=3, retry_delay=1.0, timeout=30.0)
"""Policy used for new and edited messages."""


class StreamConfig(BaseModel):
    """Configuration for the streaming ingest pipeline."""

    model_config = ConfigDict(frozen=True)

    base_url: str = Field(
        default="http://localhost:3000",
        description="Base URL of the chat-completion service.",
    )

    chat_path: str = Field(
        default="/api/chat",
        description="Path of the chat-completion endpoint, joined to base_url.",
    )

    update_throttle_ms: float = Field(
        default=8.0,
        ge=0.0,
        description="Window in which partial-content publishes are coalesced.",
    )

    retry: RetryPolicy = Field(default_factory=RetryPolicy)

    @property
    def chat_url(self) -> str:
        return self.base_url.rstrip("/") + "/" + self.chat_path.lstrip("/")


class ParleyConfig(BaseModel):
    """
    Top-level configuration for a Parley conversation.

    Example::

        config = ParleyConfig(
            context_model="gpt-4",
            stream=StreamConfig(base_url="https://chat.example.com"),
        )
    """

    model_config = ConfigDict(frozen=True)

    context_model: str = DEFAULT_CONTEXT_MODEL
    stream: StreamConfig = Field(default_factory=StreamConfig)

    @classmethod
    def default(cls) -> ParleyConfig:
        """Return a config instance with all defaults."""
        return cls()

    def context_config(self) -> ContextConfig:
        return ContextConfig.for_model(self.context_model)
