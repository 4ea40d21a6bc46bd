"""Coalescing of partial-content publishes."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable


class UpdateThrottle:
    """
    Publishes the latest content at most once per ``interval`` seconds.

    A push outside the window publishes immediately. A push inside the window
    is held and published by a timer when the window closes; later pushes in
    the same window replace the held value. ``flush()`` publishes anything
    still held, so the last published value always equals the last pushed one.

    Each stream owns its own throttle; nothing is shared between sessions.
    """

    def __init__(
        self,
        publish: Callable[[str], None],
        interval: float = 0.008,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._publish = publish
        self._interval = interval
        self._clock = clock
        self._pending: str | None = None
        self._last_publish: float | None = None
        self._handle: asyncio.TimerHandle | None = None
        self.published = 0

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def push(self, content: str) -> None:
        self._pending = content
        now = self._clock()
        if self._last_publish is None or now - self._last_publish >= self._interval:
            self._emit()
        elif self._handle is None:
            delay = self._interval - (now - self._last_publish)
            self._handle = asyncio.get_running_loop().call_later(delay, self._emit)

    def flush(self) -> None:
        self._emit()

    def cancel(self) -> None:
        """Drop held content and any scheduled publish."""
        self._cancel_timer()
        self._pending = None

    def _emit(self) -> None:
        self._cancel_timer()
        if self._pending is None:
            return
        content, self._pending = self._pending, None
        self._last_publish = self._clock()
        self.published += 1
        self._publish(content)

    def _cancel_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
