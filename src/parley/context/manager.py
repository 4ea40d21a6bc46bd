"""Context window budgeting algorithm."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import structlog
from jinja2 import Template

from parley.models.config import ContextConfig
from parley.models.message import (
    ContextInfo,
    ContextStats,
    ContextWindowReport,
    Message,
    PreparedMessage,
)
from parley.tokens.estimator import TokenEstimator

TRUNCATION_MARKER = "... [truncated]"

# Characters cut beyond the budget boundary to leave room for the marker.
_TRUNCATION_HEADROOM = 20

LIMIT_FRACTION = 0.9
"""Utilization at which ``ContextStats.has_reached_limit`` turns true."""

_SUMMARY_TEMPLATE = Template(
    "[Earlier conversation summary: {{ total }} messages exchanged "
    "({{ user }} from user, {{ assistant }} responses). "
    "Key topics and context available if needed.]"
)


@dataclass
class PreparedContext:
    """The budgeted message list ready for the streaming pipeline."""

    messages: list[PreparedMessage]
    stats: ContextStats

    def payload(self) -> list[dict[str, Any]]:
        return [m.to_payload() for m in self.messages]


class ContextManager:
    """
    Selects which prior messages fit into a model's token budget.

    Invariants:
    1. Output is in chronological order and ends with the new prompt.
    2. Excluded messages are exactly those older than the oldest included
       one; there are no gaps in the selection.
    3. ``messages_included + messages_excluded`` equals the number of valid
       history messages.
    4. At most one message is truncated, and it always ends with
       ``"... [truncated]"``.
    5. Never raises for a well-formed history, even when the prompt alone
       exceeds the budget.

    The manager holds no mutable state; its config is a frozen value. Build a
    new manager (``ContextManager.for_model``) when the model changes.
    """

    def __init__(self, config: ContextConfig | None = None, *, model: str = "") -> None:
        self._config = config or ContextConfig()
        self._model = model
        self._estimator = TokenEstimator(self._config.tokens_per_char)
        self._logger = structlog.get_logger("parley.context_manager")

    @classmethod
    def for_model(cls, model: str) -> ContextManager:
        """Create a manager using the registered config for ``model``."""
        return cls(ContextConfig.for_model(model), model=model)

    @property
    def config(self) -> ContextConfig:
        return self._config

    @property
    def model(self) -> str:
        return self._model

    def estimate_tokens(self, text: str | None) -> int:
        return self._estimator.estimate(text)

    def prepare_context(
        self,
        history: Sequence[Message],
        new_prompt: str,
        system_prompt: str | None = None,
    ) -> PreparedContext:
        """
        Build the bounded message list for the next request.

        Args:
            history: Conversation so far, oldest first. Not modified.
            new_prompt: The outgoing user message, always appended last.
            system_prompt: Optional system prompt, placed first and counted
                against the budget.

        Returns:
            PreparedContext with the selected messages and their stats.
        """
        cfg = self._config
        valid = self.filter_valid_messages(history)

        prompt_tokens = self._estimator.estimate(new_prompt)
        system_tokens = self._estimator.estimate(system_prompt) if system_prompt else 0
        available = cfg.max_tokens - prompt_tokens - system_tokens
        total_tokens = prompt_tokens + system_tokens

        head: list[PreparedMessage] = []
        if system_prompt:
            head.append(
                PreparedMessage(role="system", content=system_prompt, token_count=system_tokens)
            )

        if cfg.preserve_system_messages:
            pinned = [m for m in valid if m.role == "system"]
            candidates = [m for m in valid if m.role != "system"]
        else:
            pinned = []
            candidates = valid

        pinned_included = 0
        for msg in pinned:
            tokens = self._estimator.estimate(msg.content)
            if total_tokens + tokens > cfg.max_tokens:
                self._logger.debug("system_message_excluded", tokens=tokens)
                continue
            head.append(self._prepare(msg, tokens))
            total_tokens += tokens
            pinned_included += 1

        recent, total_tokens = self._include_recent(candidates, total_tokens)

        messages_included = pinned_included + len(recent)
        messages_excluded = len(valid) - messages_included
        messages_summarized = 0

        body = recent
        older = candidates[: len(candidates) - len(recent)]
        if cfg.summarize_older_messages and older:
            summary = self._summarize(older)
            if summary.token_count <= cfg.max_tokens - total_tokens:
                body = [summary, *recent]
                total_tokens += summary.token_count
                messages_summarized = len(older)
            else:
                self._logger.debug(
                    "summary_omitted",
                    summary_tokens=summary.token_count,
                    remaining=cfg.max_tokens - total_tokens,
                )

        prompt = PreparedMessage(role="user", content=new_prompt, token_count=prompt_tokens)

        stats = ContextStats(
            total_tokens=total_tokens,
            messages_included=messages_included,
            messages_excluded=messages_excluded,
            messages_summarized=messages_summarized,
            has_reached_limit=total_tokens >= cfg.max_tokens * LIMIT_FRACTION,
        )

        self._logger.debug(
            "context_prepared",
            model=self._model,
            available=available,
            total_tokens=total_tokens,
            included=messages_included,
            excluded=messages_excluded,
            summarized=messages_summarized,
        )

        return PreparedContext(messages=[*head, *body, prompt], stats=stats)

    @staticmethod
    def filter_valid_messages(history: Sequence[Message]) -> list[Message]:
        """Drop streaming, blank and errored messages."""
        return [
            m
            for m in history
            if not m.is_streaming and m.content.strip() and m.status != "error"
        ]

    def _include_recent(
        self,
        candidates: list[Message],
        total_tokens: int,
    ) -> tuple[list[PreparedMessage], int]:
        """Walk newest to oldest, accepting messages while the budget allows."""
        cfg = self._config
        selected: list[PreparedMessage] = []
        non_system = 0

        for msg in reversed(candidates):
            tokens = self._estimator.estimate(msg.content)
            if total_tokens + tokens <= cfg.max_tokens:
                selected.append(self._prepare(msg, tokens))
                total_tokens += tokens
                if msg.role != "system":
                    non_system += 1
                continue

            remaining = cfg.max_tokens - total_tokens
            if non_system < cfg.min_messages_included and remaining > 0:
                truncated = self.truncate(msg.content, remaining)
                truncated_tokens = self._estimator.estimate(truncated)
                if truncated_tokens > remaining:
                    self._logger.debug("forced_inclusion_skipped", remaining=remaining)
                    break
                forced = self._prepare(msg, truncated_tokens, content=truncated)
                selected.append(forced)
                total_tokens += forced.token_count
                self._logger.debug(
                    "forced_inclusion",
                    original_tokens=tokens,
                    truncated_tokens=forced.token_count,
                )
            break

        selected.reverse()
        return selected, total_tokens

    def truncate(self, content: str, max_tokens: int) -> str:
        """Cut ``content`` to fit ``max_tokens`` and append the truncation marker."""
        keep = max(self._estimator.max_chars(max_tokens) - _TRUNCATION_HEADROOM, 0)
        return content[:keep] + TRUNCATION_MARKER

    def _summarize(self, messages: list[Message]) -> PreparedMessage:
        user = sum(1 for m in messages if m.is_user)
        content = _SUMMARY_TEMPLATE.render(
            total=len(messages), user=user, assistant=len(messages) - user
        )
        return PreparedMessage(
            role="system",
            content=content,
            token_count=self._estimator.estimate(content),
            is_original=False,
            is_summary=True,
        )

    @staticmethod
    def _prepare(
        msg: Message,
        tokens: int,
        content: str | None = None,
    ) -> PreparedMessage:
        return PreparedMessage(
            role=msg.role,
            content=msg.content if content is None else content,
            attachments=list(msg.attachments) if msg.is_user else [],
            token_count=tokens,
            is_original=content is None,
        )

    # ── Utilization ────────────────────────────────────────────────────────────

    def context_info(self, messages: Sequence[PreparedMessage]) -> ContextInfo:
        """Summarize how much of the budget a prepared list uses."""
        total = sum(m.token_count for m in messages)
        remaining = self._config.max_tokens - total
        return ContextInfo(
            total_tokens=total,
            utilization=total / self._config.max_tokens * 100,
            remaining_tokens=remaining,
            can_fit_more=remaining > 100,
        )

    def report(self, history: Sequence[Message]) -> ContextWindowReport:
        """Describe the utilization of ``history`` for display."""
        max_tokens = self._config.max_tokens
        if not history:
            return ContextWindowReport(
                stats=None,
                utilization=0.0,
                remaining_tokens=max_tokens,
                can_fit_more=True,
                is_near_limit=False,
                should_suggest_new_conversation=False,
                recommendation="Ready for conversation",
            )

        stats = self.prepare_context(history, "").stats
        utilization = stats.total_tokens / max_tokens * 100
        remaining = max_tokens - stats.total_tokens

        if utilization < 50:
            recommendation = "Context window healthy"
        elif utilization < 80:
            recommendation = "Context filling up, consider conversation length"
        elif utilization < 95:
            recommendation = "Context nearly full, older messages may be excluded"
        else:
            recommendation = "Context window full, consider starting new conversation"

        return ContextWindowReport(
            stats=stats,
            utilization=utilization,
            remaining_tokens=remaining,
            can_fit_more=remaining > 200,
            is_near_limit=utilization > 80,
            should_suggest_new_conversation=utilization > 90,
            recommendation=recommendation,
        )
