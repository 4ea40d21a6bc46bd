"""Parley streaming ingest components."""

from parley.streaming.errors import (
    AuthenticationError,
    BadRequestError,
    ChatStreamError,
    NetworkError,
    RateLimitError,
    ServiceUnavailableError,
    StreamTimeoutError,
    classify_error,
)
from parley.streaming.frames import Frame, FrameDecoder, parse_frame
from parley.streaming.pipeline import StreamingPipeline, StreamSession
from parley.streaming.throttle import UpdateThrottle

__all__ = [
    "AuthenticationError",
    "BadRequestError",
    "ChatStreamError",
    "Frame",
    "FrameDecoder",
    "NetworkError",
    "RateLimitError",
    "ServiceUnavailableError",
    "StreamSession",
    "StreamTimeoutError",
    "StreamingPipeline",
    "UpdateThrottle",
    "classify_error",
    "parse_frame",
]
