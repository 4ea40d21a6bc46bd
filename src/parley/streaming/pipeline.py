"""Streaming response ingest pipeline."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from typing import Any

import httpx
import structlog

from parley.events.bus import EventBus, ParleyEvent
from parley.models.config import RetryPolicy, StreamConfig
from parley.models.message import (
    Attachment,
    MessageUpdate,
    PreparedMessage,
    StreamFailure,
    StreamResult,
    StreamStatus,
)
from parley.streaming.errors import StreamTimeoutError, classify_error, error_for_status
from parley.streaming.frames import Frame, FrameDecoder
from parley.streaming.throttle import UpdateThrottle

Mutator = Callable[[MessageUpdate], None]
"""Caller callback: replace the message identified by ``update.message_id``."""

LoadingSetter = Callable[[bool], None]

_TERMINAL: frozenset[str] = frozenset({"sent", "error", "cancelled"})


class StreamSession:
    """
    Mutable state of one in-flight response.

    Only the pipeline mutates a session. The caller keeps a reference as the
    abort handle and calls :meth:`cancel`.
    """

    def __init__(self, message_id: str) -> None:
        self.message_id = message_id
        self.current_content = ""
        self.attempt = 0
        self.cancelled = False
        self.status: StreamStatus = "streaming"
        self.throttle: UpdateThrottle | None = None
        self._runner: asyncio.Task[Any] | None = None

    @property
    def done(self) -> bool:
        return self.status in _TERMINAL

    def cancel(self) -> bool:
        """
        Request cancellation. Idempotent.

        Returns:
            True if this call cancelled the stream, False if it was already
            cancelled or had finished.
        """
        runner = self._runner
        if self.cancelled or self.done or (runner is not None and runner.done()):
            return False
        self.cancelled = True
        if runner is not None:
            runner.cancel()
        return True

    def _bind(self, runner: asyncio.Task[Any]) -> None:
        self._runner = runner


class StreamingPipeline:
    """
    Sends a budgeted context and ingests the line-framed response stream.

    Per request the pipeline moves through
    ``Sending -> Streaming -> Completed``, with ``Retrying`` between attempts
    for transient failures and ``Cancelled`` reachable from any state. All
    request and stream errors are classified and returned in the
    :class:`StreamResult`; none escape ``send()``.

    Example::

        async with StreamingPipeline(StreamConfig(base_url="http://localhost:3000")) as pipeline:
            result = await pipeline.send(
                "Hello!",
                prepared.messages,
                message_id="msg_01",
                on_update=lambda update: print(update.content),
            )
    """

    def __init__(
        self,
        config: StreamConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._config = config or StreamConfig()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(60.0, connect=10.0))
        self._event_bus = event_bus or EventBus()
        self._logger = structlog.get_logger("parley.pipeline")

    @property
    def config(self) -> StreamConfig:
        return self._config

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> StreamingPipeline:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    @staticmethod
    def build_request_body(
        prompt: str,
        prepared_messages: Sequence[PreparedMessage],
        *,
        attachments: Sequence[Attachment] = (),
        user_id: str | None = None,
        conversation_id: str | None = None,
    ) -> dict[str, Any]:
        """Render the outbound JSON body. Appends the prompt if it is not already last."""
        messages = [m.to_payload() for m in prepared_messages]
        last = prepared_messages[-1] if prepared_messages else None
        if last is None or last.role != "user" or last.content != prompt:
            messages.append({"role": "user", "content": prompt})
        return {
            "messages": messages,
            "attachments": [a.model_dump() for a in attachments],
            "userId": user_id,
            "conversationId": conversation_id,
        }

    async def send(
        self,
        prompt: str,
        prepared_messages: Sequence[PreparedMessage],
        *,
        message_id: str,
        on_update: Mutator,
        attachments: Sequence[Attachment] = (),
        user_id: str | None = None,
        conversation_id: str | None = None,
        retry: RetryPolicy | None = None,
        session: StreamSession | None = None,
        on_loading: LoadingSetter | None = None,
    ) -> StreamResult:
        """
        Stream one assistant response.

        Args:
            prompt: The outgoing user message.
            prepared_messages: Budgeted context from ``ContextManager``.
            message_id: ID of the assistant message being filled in.
            on_update: Mutation callback receiving throttled partial content,
                retry notices and exactly one terminal update.
            attachments: Files attached to the outgoing message.
            user_id: Forwarded as ``userId``.
            conversation_id: Forwarded as ``conversationId``.
            retry: Overrides ``StreamConfig.retry`` for this call.
            session: Pre-created session, so the caller can hold the abort
                handle before the request starts.
            on_loading: Loading-flag setter, called with True then False.

        Returns:
            StreamResult with final content and terminal status.
        """
        session = session or StreamSession(message_id)
        policy = retry or self._config.retry
        body = self.build_request_body(
            prompt,
            prepared_messages,
            attachments=attachments,
            user_id=user_id,
            conversation_id=conversation_id,
        )
        logger = self._logger.bind(message_id=session.message_id, conversation_id=conversation_id)
        session.throttle = UpdateThrottle(
            lambda content: self._publish_partial(session, on_update, content),
            interval=self._config.update_throttle_ms / 1000,
        )

        self._set_loading(on_loading, True, logger)
        try:
            logger.debug("stream_started", message_count=len(body["messages"]))
            self._event_bus.publish(
                ParleyEvent.STREAM_STARTED,
                {"message_id": session.message_id, "attempt": 1, "content_length": 0},
            )
            runner = asyncio.create_task(self._run(session, body, policy, on_update, logger))
            session._bind(runner)
            try:
                failure = await runner
            except asyncio.CancelledError:
                current = asyncio.current_task()
                if current is not None and current.cancelling():
                    # The caller's own task is being cancelled, not this stream.
                    session.throttle.cancel()
                    raise
                failure = None
            return self._finish(session, failure, on_update, logger)
        finally:
            self._set_loading(on_loading, False, logger)

    # ── Attempt loop ───────────────────────────────────────────────────────────

    async def _run(
        self,
        session: StreamSession,
        body: dict[str, Any],
        policy: RetryPolicy,
        on_update: Mutator,
        logger: structlog.BoundLogger,
    ) -> StreamFailure | None:
        """Run attempts until success, a terminal failure or exhausted retries."""
        retry_total = policy.retry_attempts
        failure: StreamFailure | None = None

        for attempt in range(1, retry_total + 2):
            if session.cancelled:
                return None
            session.attempt = attempt
            session.status = "streaming"
            session.current_content = ""
            try:
                await self._attempt(session, body, policy)
                return None
            except Exception as exc:
                failure = classify_error(exc)

            if session.cancelled:
                return None
            if not failure.transient or attempt > retry_total:
                return failure

            logger.warning(
                "stream_retrying",
                retry_attempt=attempt,
                retry_total=retry_total,
                kind=failure.kind,
                error=failure.detail,
            )
            session.status = "retrying"
            if session.throttle is not None:
                session.throttle.cancel()
            self._notify(
                on_update,
                MessageUpdate(
                    message_id=session.message_id,
                    content="",
                    status="retrying",
                    retry_attempt=attempt,
                    retry_total=retry_total,
                ),
                logger,
            )
            self._event_bus.publish(
                ParleyEvent.STREAM_RETRYING,
                {
                    "message_id": session.message_id,
                    "retry_attempt": attempt,
                    "retry_total": retry_total,
                    "kind": failure.kind,
                },
            )
            await asyncio.sleep(policy.retry_delay)

        return failure

    async def _attempt(
        self,
        session: StreamSession,
        body: dict[str, Any],
        policy: RetryPolicy,
    ) -> None:
        """Send once and read the body until it ends, an end frame, or cancellation."""
        request = self._client.build_request("POST", self._config.chat_url, json=body)
        try:
            response = await asyncio.wait_for(
                self._client.send(request, stream=True), timeout=policy.timeout
            )
        except TimeoutError as exc:
            raise StreamTimeoutError(f"Request timed out after {policy.timeout}s") from exc

        try:
            error = error_for_status(response.status_code, response.reason_phrase)
            if error is not None:
                raise error

            decoder = FrameDecoder()
            try:
                async for text in response.aiter_text():
                    if self._apply(session, decoder.feed(text)):
                        return
                self._apply(session, decoder.close())
            finally:
                if decoder.ignored_lines:
                    self._logger.debug(
                        "frames_ignored",
                        message_id=session.message_id,
                        count=decoder.ignored_lines,
                    )
        finally:
            await response.aclose()

    @staticmethod
    def _apply(session: StreamSession, frames: list[Frame]) -> bool:
        """Append content frames in order. Returns True when reading should stop."""
        for frame in frames:
            if session.cancelled:
                return True
            if frame.kind == "end":
                return True
            session.current_content += frame.text
            if session.throttle is not None:
                session.throttle.push(session.current_content)
        return session.cancelled

    # ── Publishing ─────────────────────────────────────────────────────────────

    def _publish_partial(self, session: StreamSession, on_update: Mutator, content: str) -> None:
        if session.cancelled or session.done:
            return
        self._notify(
            on_update,
            MessageUpdate(message_id=session.message_id, content=content, status="streaming"),
            self._logger,
        )

    def _finish(
        self,
        session: StreamSession,
        failure: StreamFailure | None,
        on_update: Mutator,
        logger: structlog.BoundLogger,
    ) -> StreamResult:
        if session.throttle is not None:
            session.throttle.cancel()

        payload = {
            "message_id": session.message_id,
            "attempt": session.attempt,
            "content_length": len(session.current_content),
        }
        if session.cancelled:
            session.status = "cancelled"
            logger.info("stream_cancelled", attempt=session.attempt)
            self._event_bus.publish(ParleyEvent.STREAM_CANCELLED, payload)
            error_message = None
        elif failure is not None:
            session.status = "error"
            logger.error(
                "stream_failed",
                attempts=session.attempt,
                kind=failure.kind,
                error=failure.detail,
            )
            self._event_bus.publish(
                ParleyEvent.STREAM_FAILED,
                {
                    "message_id": session.message_id,
                    "attempts": session.attempt,
                    "kind": failure.kind,
                    "error": failure.detail,
                },
            )
            error_message = failure.user_message
        else:
            session.status = "sent"
            logger.info(
                "stream_completed",
                attempt=session.attempt,
                content_length=len(session.current_content),
            )
            self._event_bus.publish(ParleyEvent.STREAM_COMPLETED, payload)
            error_message = None

        self._notify(
            on_update,
            MessageUpdate(
                message_id=session.message_id,
                content=session.current_content,
                status=session.status,
                error_message=error_message,
            ),
            logger,
        )
        return StreamResult(
            message_id=session.message_id,
            content=session.current_content,
            status=session.status,
            error=failure if session.status == "error" else None,
            attempts=session.attempt,
        )

    @staticmethod
    def _notify(on_update: Mutator, update: MessageUpdate, logger: structlog.BoundLogger) -> None:
        try:
            on_update(update)
        except Exception as exc:
            logger.error("update_callback_error", status=update.status, error=str(exc))

    @staticmethod
    def _set_loading(
        on_loading: LoadingSetter | None, value: bool, logger: structlog.BoundLogger
    ) -> None:
        if on_loading is None:
            return
        try:
            on_loading(value)
        except Exception as exc:
            logger.error("loading_callback_error", value=value, error=str(exc))
