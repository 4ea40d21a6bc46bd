"""Parley event bus."""

from parley.events.bus import EventBus, Handler, ParleyEvent
from parley.events.payloads import (
    ContextPreparedPayload,
    MemoryPayload,
    MessageCreatedPayload,
    StreamFailedPayload,
    StreamLifecyclePayload,
    StreamRetryingPayload,
)

__all__ = [
    "ContextPreparedPayload",
    "EventBus",
    "Handler",
    "MemoryPayload",
    "MessageCreatedPayload",
    "ParleyEvent",
    "StreamFailedPayload",
    "StreamLifecyclePayload",
    "StreamRetryingPayload",
]
