"""Shared fixtures for Parley tests."""

from __future__ import annotations

import json
from collections.abc import Callable, Sequence
from typing import Any

import httpx
import pytest

from parley.events.bus import EventBus, ParleyEvent
from parley.models.config import RetryPolicy, StreamConfig
from parley.models.message import Message, MessageUpdate
from parley.tokens.estimator import TokenEstimator

BASE_URL = "http://chat.test"


@pytest.fixture
def estimator():
    """TokenEstimator with the default 0.25 tokens-per-character ratio."""
    return TokenEstimator()


@pytest.fixture
def stream_config():
    """StreamConfig pointed at the mock transport with instant retries."""
    return StreamConfig(
        base_url=BASE_URL,
        update_throttle_ms=0.0,
        retry=RetryPolicy(retry_attempts=2, retry_delay=0.0, timeout=5.0),
    )


@pytest.fixture
def event_bus():
    """EventBus with a .collected list for asserting events."""
    bus = EventBus()
    collected: list[tuple[ParleyEvent, dict[str, Any]]] = []

    def _collect(event: ParleyEvent, payload: dict[str, Any]) -> None:
        collected.append((event, payload))

    bus.subscribe_all(_collect)
    bus.collected = collected  # type: ignore[attr-defined]
    return bus


@pytest.fixture
def updates():
    """Recording mutator: a list of MessageUpdate with a ``record`` callable."""

    class _Recorder(list):
        def record(self, update: MessageUpdate) -> None:
            self.append(update)

        @property
        def statuses(self) -> list[str]:
            return [u.status for u in self]

    return _Recorder()


def make_message(
    role: str = "user",
    content: str = "Hello world",
    msg_id: str | None = None,
    **kwargs: Any,
) -> Message:
    """Helper to create a test Message."""
    make_message.counter += 1  # type: ignore[attr-defined]
    return Message(
        id=msg_id or f"msg_{make_message.counter:04d}_{role[:1]}",  # type: ignore[attr-defined]
        role=role,
        content=content,
        **kwargs,
    )


make_message.counter = 0  # type: ignore[attr-defined]


def make_history(*contents: str) -> list[Message]:
    """Alternating user/assistant messages, starting with the user."""
    return [
        make_message(role="user" if i % 2 == 0 else "assistant", content=c)
        for i, c in enumerate(contents)
    ]


def frame_body(*fragments: str, end: bool = True) -> bytes:
    """Encode content fragments as a ``0:"..."`` line-framed response body."""
    lines = [f"0:{json.dumps(f)}\n" for f in fragments]
    if end:
        lines.append('e:{"finishReason":"stop"}\n')
    return "".join(lines).encode()


def scripted_transport(
    responses: Sequence[httpx.Response | bytes | Exception | Callable[[httpx.Request], Any]],
) -> tuple[httpx.MockTransport, list[httpx.Request]]:
    """
    MockTransport answering successive requests from ``responses``.

    Bytes become a 200 response body, exceptions are raised, and callables
    are invoked with the request (coroutine functions are awaited). The last
    entry repeats once the script runs out.
    """
    seen: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        index = min(len(seen), len(responses) - 1)
        seen.append(request)
        item = responses[index]
        if isinstance(item, bytes):
            return httpx.Response(200, content=item)
        if isinstance(item, Exception):
            raise item
        if callable(item):
            result = item(request)
            if hasattr(result, "__await__"):
                result = await result
            return result
        return httpx.Response(item.status_code, headers=item.headers, content=item.content)

    return httpx.MockTransport(handler), seen
