"""Parley data models."""

from parley.models.config import (
    DEFAULT_CONTEXT_MODEL,
    MANUAL_RETRY_POLICY,
    MODEL_CONTEXT_CONFIGS,
    SEND_RETRY_POLICY,
    ContextConfig,
    ParleyConfig,
    RetryPolicy,
    StreamConfig,
)
from parley.models.message import (
    Attachment,
    ContextInfo,
    ContextStats,
    ContextWindowReport,
    Message,
    MessageStatus,
    MessageUpdate,
    PreparedMessage,
    Role,
    StreamFailure,
    StreamResult,
    StreamStatus,
)

__all__ = [
    # Config
    "ContextConfig",
    "DEFAULT_CONTEXT_MODEL",
    "MANUAL_RETRY_POLICY",
    "MODEL_CONTEXT_CONFIGS",
    "ParleyConfig",
    "RetryPolicy",
    "SEND_RETRY_POLICY",
    "StreamConfig",
    # Messages
    "Attachment",
    "Message",
    "MessageStatus",
    "PreparedMessage",
    "Role",
    # Context
    "ContextInfo",
    "ContextStats",
    "ContextWindowReport",
    # Streaming
    "MessageUpdate",
    "StreamFailure",
    "StreamResult",
    "StreamStatus",
]
