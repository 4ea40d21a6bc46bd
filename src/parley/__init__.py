"""
Parley: context budgeting and streaming ingest for chat clients.

Primary entry point::

    from parley import ChatController, ParleyConfig

    async with ChatController(config=ParleyConfig(context_model="gpt-4")) as chat:
        result = await chat.send_message("Hello!")
        print(result.content)
"""

from parley.ids import make_id
from parley.models import (
    DEFAULT_CONTEXT_MODEL,
    MANUAL_RETRY_POLICY,
    MODEL_CONTEXT_CONFIGS,
    SEND_RETRY_POLICY,
    Attachment,
    ContextConfig,
    ContextInfo,
    ContextStats,
    ContextWindowReport,
    Message,
    MessageUpdate,
    ParleyConfig,
    PreparedMessage,
    RetryPolicy,
    StreamConfig,
    StreamFailure,
    StreamResult,
)
from parley.events.bus import EventBus, ParleyEvent
from parley.tokens.estimator import TokenEstimator
from parley.context.manager import ContextManager, PreparedContext
from parley.streaming.errors import ChatStreamError, classify_error
from parley.streaming.pipeline import StreamingPipeline, StreamSession
from parley.memory.service import InMemoryMemoryService, Mem0MemoryService, MemoryService
from parley.chat.controller import ChatController

__version__ = "0.1.0"

__all__ = [
    # Core
    "ChatController",
    "make_id",
    # Config
    "ParleyConfig",
    "ContextConfig",
    "StreamConfig",
    "RetryPolicy",
    "DEFAULT_CONTEXT_MODEL",
    "MODEL_CONTEXT_CONFIGS",
    "SEND_RETRY_POLICY",
    "MANUAL_RETRY_POLICY",
    # Models
    "Attachment",
    "Message",
    "PreparedMessage",
    "ContextStats",
    "ContextInfo",
    "ContextWindowReport",
    "MessageUpdate",
    "StreamFailure",
    "StreamResult",
    # Events
    "EventBus",
    "ParleyEvent",
    # Context
    "ContextManager",
    "PreparedContext",
    "TokenEstimator",
    # Streaming
    "StreamingPipeline",
    "StreamSession",
    "ChatStreamError",
    "classify_error",
    # Memory
    "MemoryService",
    "InMemoryMemoryService",
    "Mem0MemoryService",
]
