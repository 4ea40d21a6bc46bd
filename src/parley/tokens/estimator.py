"""Character-ratio token estimation."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from parley.models.message import Message, PreparedMessage


class TokenEstimator:
    """
    Heuristic token counting: ``ceil(len(text) * tokens_per_char)``.

    This is not a tokenizer. Budgets computed by other clients of the same
    chat service use the identical ratio, so swapping in a real tokenizer
    would change which messages are selected for a given history.

    Example::

        estimator = TokenEstimator(tokens_per_char=0.25)
        estimator.estimate("x" * 20)  # 5
    """

    def __init__(self, tokens_per_char: float = 0.25) -> None:
        if tokens_per_char <= 0:
            raise ValueError("tokens_per_char must be positive")
        self._tokens_per_char = tokens_per_char

    @property
    def tokens_per_char(self) -> float:
        return self._tokens_per_char

    def estimate(self, text: str | None) -> int:
        """
        Estimate the token count for a string.

        Returns:
            0 for empty or missing text, otherwise at least 1.
        """
        if not text:
            return 0
        return math.ceil(len(text) * self._tokens_per_char)

    def estimate_message(self, msg: Message | PreparedMessage) -> int:
        """Estimate a message by its text content. Attachments are not counted."""
        return self.estimate(msg.content)

    def max_chars(self, tokens: int) -> int:
        """Largest character count whose estimate stays within ``tokens``."""
        if tokens <= 0:
            return 0
        return math.floor(tokens / self._tokens_per_char)
