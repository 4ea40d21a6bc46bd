"""In-process pub/sub event bus for Parley context and streaming events."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Coroutine
from enum import StrEnum
from typing import Any

import structlog

Handler = Callable[["ParleyEvent", dict[str, Any]], None | Awaitable[None]]


class ParleyEvent(StrEnum):
    """All event types published by Parley components.

    Typed payload definitions for each event live in
    :mod:`parley.events.payloads`.

    **Payload schemas by event:**

    ``CONTEXT_PREPARED``
        :class:`~parley.events.payloads.ContextPreparedPayload`:
        the :class:`~parley.models.message.ContextStats` fields plus ``model``.

    ``CONTEXT_LIMIT_REACHED``
        Same payload as ``CONTEXT_PREPARED``; published only when
        ``has_reached_limit`` is true.

    ``STREAM_STARTED``, ``STREAM_COMPLETED``, ``STREAM_CANCELLED``
        :class:`~parley.events.payloads.StreamLifecyclePayload`:
        ``message_id: str``, ``attempt: int``, ``content_length: int``

    ``STREAM_RETRYING``
        :class:`~parley.events.payloads.StreamRetryingPayload`:
        ``message_id``, ``retry_attempt``, ``retry_total``, ``kind``

    ``STREAM_FAILED``
        :class:`~parley.events.payloads.StreamFailedPayload`:
        ``message_id``, ``attempts``, ``kind``, ``error``

    ``MESSAGE_CREATED``
        :class:`~parley.events.payloads.MessageCreatedPayload`:
        ``message_id``, ``role``, ``conversation_id``

    ``MEMORY_ADDED``, ``MEMORY_FAILED``
        :class:`~parley.events.payloads.MemoryPayload`:
        ``user_id``, ``conversation_id``, ``memory_id`` or ``error``
    """

    # Context budgeting
    CONTEXT_PREPARED = "context.prepared"
    CONTEXT_LIMIT_REACHED = "context.limit_reached"

    # Stream lifecycle
    STREAM_STARTED = "stream.started"
    STREAM_RETRYING = "stream.retrying"
    STREAM_COMPLETED = "stream.completed"
    STREAM_FAILED = "stream.failed"
    STREAM_CANCELLED = "stream.cancelled"

    # Conversation
    MESSAGE_CREATED = "message.created"

    # Memory
    MEMORY_ADDED = "memory.added"
    MEMORY_FAILED = "memory.failed"



class EventBus:
    """
    In-process publisher for :class:`ParleyEvent` notifications.

    Handlers receive ``(event, payload)``. Plain functions run inside
    ``publish()``; coroutine functions become tasks on the running loop and
    can be awaited with :meth:`drain`. A failing handler is logged and never
    reaches the publisher, so a broken UI listener cannot stop a stream.

    Example::

        bus = EventBus()

        def on_retry(event, payload):
            print(f"retrying ({payload['retry_attempt']}/{payload['retry_total']})")

        bus.subscribe(ParleyEvent.STREAM_RETRYING, on_retry)
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._by_event: dict[ParleyEvent, list[Handler]] = {}
        self._wildcard: list[Handler] = []
        self._pending: set[asyncio.Task[Any]] = set()
        self._logger = logger or structlog.get_logger("parley.events")

    @property
    def pending(self) -> int:
        """Number of async handler tasks not yet finished."""
        return len(self._pending)

    def subscribe(self, event: ParleyEvent, handler: Handler) -> None:
        self._by_event.setdefault(event, []).append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        """Receive every event type."""
        self._wildcard.append(handler)

    def unsubscribe(self, event: ParleyEvent | None, handler: Handler) -> None:
        """
        Remove ``handler``. Pass ``event=None`` to remove a ``subscribe_all``
        registration. Unknown handlers are ignored.
        """
        handlers = self._wildcard if event is None else self._by_event.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: ParleyEvent, payload: dict[str, Any]) -> None:
        for handler in [*self._by_event.get(event, ()), *self._wildcard]:
            try:
                outcome = handler(event, payload)
            except Exception as exc:
                self._report(event, handler, exc)
                continue
            if asyncio.iscoroutine(outcome):
                self._spawn(event, handler, outcome)

    async def drain(self) -> None:
        """Wait for scheduled async handlers to finish."""
        while self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def _spawn(self, event: ParleyEvent, handler: Handler, coro: Coroutine[Any, Any, None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Published outside a loop: the coroutine can never run.
            coro.close()
            return
        task = loop.create_task(coro)
        self._pending.add(task)

        def _done(t: asyncio.Task[Any]) -> None:
            self._pending.discard(t)
            if not t.cancelled() and t.exception() is not None:
                self._report(event, handler, t.exception())

        task.add_done_callback(_done)

    def _report(self, event: ParleyEvent, handler: Handler, exc: BaseException | None) -> None:
        self._logger.error(
            "event_handler_error",
            event=str(event),
            handler=getattr(handler, "__qualname__", repr(handler)),
            error=str(exc),
        )
