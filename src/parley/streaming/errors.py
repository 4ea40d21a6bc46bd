"""Streaming error types and failure classification."""

from __future__ import annotations

import httpx

from parley.models.message import StreamFailure

RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please wait a moment and try again."
TIMEOUT_MESSAGE = "The request timed out. Please try again."
NETWORK_MESSAGE = "Network error. Please check your connection and try again."
AUTH_MESSAGE = "Authentication error. Please check your API configuration."
GENERIC_MESSAGE = "Sorry, I encountered an error. Please try again."


class ChatStreamError(Exception):
    """Base class for failures raised while sending or reading a stream."""

    kind = "unknown"
    transient = False
    user_message = GENERIC_MESSAGE

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(ChatStreamError):
    """HTTP 429 or a provider quota error."""

    kind = "rate_limit"
    transient = True
    user_message = RATE_LIMIT_MESSAGE


class StreamTimeoutError(ChatStreamError):
    """The request did not produce a response within the policy timeout."""

    kind = "timeout"
    transient = True
    user_message = TIMEOUT_MESSAGE


class NetworkError(ChatStreamError):
    """Connection could not be established or broke mid-stream."""

    kind = "network"
    transient = True
    user_message = NETWORK_MESSAGE


class ServiceUnavailableError(ChatStreamError):
    """5xx from the chat service."""

    kind = "unavailable"
    transient = True


class AuthenticationError(ChatStreamError):
    """Missing or rejected credentials."""

    kind = "auth"
    user_message = AUTH_MESSAGE


class BadRequestError(ChatStreamError):
    """The service rejected the request body."""

    kind = "bad_request"


def error_for_status(status_code: int, reason: str = "") -> ChatStreamError | None:
    """Return the typed error for a non-2xx status, or None for success."""
    if status_code < 400:
        return None
    message = f"HTTP error! status: {status_code}" + (f" {reason}" if reason else "")
    if status_code == 429:
        return RateLimitError(message, status_code=status_code)
    if status_code in (401, 403):
        return AuthenticationError(message, status_code=status_code)
    if status_code == 408:
        return StreamTimeoutError(message, status_code=status_code)
    if status_code >= 500:
        return ServiceUnavailableError(message, status_code=status_code)
    return BadRequestError(message, status_code=status_code)


# Ordered: the first matching group wins.
_KEYWORD_RULES: tuple[tuple[type[ChatStreamError], tuple[str, ...]], ...] = (
    (RateLimitError, ("rate limit", "ratelimit", "quota", "too many requests")),
    (AuthenticationError, ("api key", "authentication", "unauthorized", "forbidden")),
    (StreamTimeoutError, ("timeout", "timed out")),
    (NetworkError, ("network", "fetch", "connection", "econnreset", "econnrefused")),
    (ServiceUnavailableError, ("temporary", "temporarily", "unavailable")),
)


def classify_error(exc: BaseException) -> StreamFailure:
    """
    Map any exception raised during a stream attempt to a ``StreamFailure``.

    Typed errors keep their own classification. ``httpx`` and builtin timeout
    and connection errors map by type. Everything else is matched on its
    lower-cased message text; no match means a non-transient generic failure.
    """
    detail = str(exc) or type(exc).__name__
    error_type = _error_type(exc, detail)
    return StreamFailure(
        kind=error_type.kind,  # type: ignore[arg-type]
        transient=error_type.transient,
        user_message=error_type.user_message,
        detail=detail,
    )


def _error_type(exc: BaseException, detail: str) -> type[ChatStreamError]:
    if isinstance(exc, ChatStreamError) and type(exc) is not ChatStreamError:
        return type(exc)
    if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
        return StreamTimeoutError
    if isinstance(exc, httpx.HTTPStatusError):
        typed = error_for_status(exc.response.status_code)
        return type(typed) if typed is not None else ChatStreamError
    if isinstance(exc, (httpx.TransportError, ConnectionError)):
        return NetworkError

    text = detail.lower()
    for error_type, keywords in _KEYWORD_RULES:
        if any(keyword in text for keyword in keywords):
            return error_type
    return ChatStreamError
