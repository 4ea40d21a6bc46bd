"""Conversation controller: the caller of the context manager and pipeline."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

import structlog

from parley.context.manager import ContextManager, PreparedContext
from parley.events.bus import EventBus, ParleyEvent
from parley.ids import make_id
from parley.memory.service import MemoryService
from parley.models.config import (
    MANUAL_RETRY_POLICY,
    SEND_RETRY_POLICY,
    ParleyConfig,
    RetryPolicy,
)
from parley.models.message import (
    Attachment,
    ContextWindowReport,
    Message,
    MessageUpdate,
    StreamResult,
)
from parley.streaming.pipeline import StreamingPipeline, StreamSession

STOPPED_FALLBACK = "Response stopped by user."

ChangeListener = Callable[[list[Message]], None]


class ChatController:
    """
    Owns one conversation: its messages, its model's context manager and at
    most one in-flight stream.

    Every send, edit or retry first cancels the active stream, so a
    conversation never has two assistant responses streaming at once.

    Usage::

        async with ChatController(config=ParleyConfig(context_model="gpt-4")) as chat:
            result = await chat.send_message("Hello!")
            print(result.content)
    """

    def __init__(
        self,
        *,
        config: ParleyConfig | None = None,
        conversation_id: str | None = None,
        user_id: str | None = None,
        system_prompt: str | None = None,
        pipeline: StreamingPipeline | None = None,
        context_manager: ContextManager | None = None,
        memory: MemoryService | None = None,
        event_bus: EventBus | None = None,
        on_change: ChangeListener | None = None,
    ) -> None:
        self._config = config or ParleyConfig()
        self._conversation_id = conversation_id or make_id("conv")
        self._user_id = user_id or make_id("user")
        self._system_prompt = system_prompt
        self._event_bus = event_bus or EventBus()
        self._owns_pipeline = pipeline is None
        self._pipeline = pipeline or StreamingPipeline(
            self._config.stream, event_bus=self._event_bus
        )
        self._context = context_manager or ContextManager.for_model(self._config.context_model)
        self._memory = memory
        self._on_change = on_change
        self._messages: list[Message] = []
        self._active: StreamSession | None = None
        # Latest session writing each assistant message.
        self._owners: dict[str, StreamSession] = {}
        self._is_loading = False
        self._logger = structlog.get_logger("parley.chat").bind(
            conversation_id=self._conversation_id
        )

    # ── State ──────────────────────────────────────────────────────────────────

    @property
    def conversation_id(self) -> str:
        return self._conversation_id

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def active_session(self) -> StreamSession | None:
        return self._active

    @property
    def context_manager(self) -> ContextManager:
        return self._context

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    def set_model(self, model: str) -> None:
        """Switch the budgeting policy. Builds a fresh manager; nothing is mutated."""
        self._context = ContextManager.for_model(model)
        self._logger.info("context_model_changed", model=model)

    def context_report(self) -> ContextWindowReport:
        return self._context.report(self._messages)

    # ── Operations ─────────────────────────────────────────────────────────────

    async def send_message(
        self,
        content: str,
        attachments: Sequence[Attachment] = (),
    ) -> StreamResult | None:
        """
        Append a user message and stream the assistant's reply.

        Returns:
            The stream outcome, or None when ``content`` is blank.
        """
        if not content.strip():
            return None
        self._cancel_active()

        history = list(self._messages)
        user = Message(
            id=make_id("msg"),
            role="user",
            content=content,
            attachments=list(attachments),
        )
        self._append(user)
        return await self._respond(content, history, user.attachments, SEND_RETRY_POLICY)

    async def edit_message(self, message_id: str, new_content: str) -> StreamResult | None:
        """
        Replace a user message's content and replay the conversation from it.

        Every message after the edited one is discarded.
        """
        if not new_content.strip():
            return None
        index = self._index_of(message_id)
        if index is None or not self._messages[index].is_user:
            return None
        self._cancel_active()

        edited = self._messages[index].with_update(content=new_content, status="sent")
        history = self._messages[:index]
        self._messages = [*history, edited]
        self._changed()
        self._logger.info("message_edited", message_id=message_id)
        return await self._respond(new_content, history, edited.attachments, SEND_RETRY_POLICY)

    async def retry_message(self, message_id: str) -> StreamResult | None:
        """Regenerate an assistant message from the user message before it."""
        index = self._index_of(message_id)
        if index is None or self._messages[index].is_user:
            return None
        user_index = next(
            (i for i in range(index - 1, -1, -1) if self._messages[i].is_user),
            None,
        )
        if user_index is None:
            return None
        self._cancel_active()

        user = self._messages[user_index]
        target = self._messages[index]
        self._messages[index] = target.with_update(
            content="",
            is_streaming=True,
            status="sending",
            error_message=None,
            retry_count=target.retry_count + 1,
        )
        self._changed()
        return await self._respond(
            user.content,
            self._messages[:user_index],
            user.attachments,
            MANUAL_RETRY_POLICY,
            assistant_id=message_id,
        )

    def stop_streaming(self) -> bool:
        """Cancel the in-flight response, if any."""
        session, self._active = self._active, None
        if session is None:
            return False
        return session.cancel()

    async def aclose(self) -> None:
        self.stop_streaming()
        await self._event_bus.drain()
        if self._owns_pipeline:
            await self._pipeline.aclose()

    async def __aenter__(self) -> ChatController:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    # ── Internals ──────────────────────────────────────────────────────────────

    async def _respond(
        self,
        prompt: str,
        history: list[Message],
        attachments: Sequence[Attachment],
        retry: RetryPolicy,
        assistant_id: str | None = None,
    ) -> StreamResult:
        if assistant_id is None:
            assistant = Message(
                id=make_id("msg"),
                role="assistant",
                is_streaming=True,
                status="sending",
            )
            self._append(assistant)
            assistant_id = assistant.id

        # Claimed before the first await.
        session = StreamSession(assistant_id)
        self._active = session
        self._owners[assistant_id] = session

        system_prompt = await self._system_prompt_for(prompt)
        prepared = self._context.prepare_context(history, prompt, system_prompt)
        self._publish_context(prepared)

        result = await self._pipeline.send(
            prompt,
            prepared.messages,
            message_id=assistant_id,
            on_update=lambda update: self._apply_update(session, update),
            attachments=attachments,
            user_id=self._user_id,
            conversation_id=self._conversation_id,
            retry=retry,
            session=session,
            on_loading=lambda value: self._set_loading(session, value),
        )
        if self._active is session:
            self._active = None
        if self._owners.get(assistant_id) is session:
            del self._owners[assistant_id]

        if result.status == "sent":
            await self._remember(prompt, result.content)
        return result

    def _apply_update(self, session: StreamSession, update: MessageUpdate) -> None:
        if self._owners.get(update.message_id) is not session:
            self._logger.debug(
                "stale_update_dropped", message_id=update.message_id, status=update.status
            )
            return
        index = self._index_of(update.message_id)
        if index is None:
            return
        message = self._messages[index]

        if update.status in ("streaming", "retrying"):
            message = message.with_update(
                content=update.content, status=update.status, is_streaming=True
            )
        elif update.status == "sent":
            message = message.with_update(
                content=update.content, status="sent", is_streaming=False
            )
        elif update.status == "cancelled":
            message = message.with_update(
                content=update.content or STOPPED_FALLBACK,
                status="cancelled",
                is_streaming=False,
            )
        else:
            message = message.with_update(
                content=update.content or update.error_message or "",
                status="error",
                error_message=update.error_message,
                is_streaming=False,
            )

        self._messages[index] = message
        self._changed()

    async def _system_prompt_for(self, prompt: str) -> str | None:
        if self._memory is None:
            return self._system_prompt
        try:
            memories = await self._memory.search(prompt, self._user_id, limit=5)
        except Exception as exc:
            self._logger.warning("memory_search_failed", error=str(exc))
            return self._system_prompt
        if not memories:
            return self._system_prompt

        lines = "\n".join(f"- {m.memory}" for m in memories)
        block = f"Relevant memories about the user:\n{lines}"
        return f"{self._system_prompt}\n\n{block}" if self._system_prompt else block

    async def _remember(self, prompt: str, reply: str) -> None:
        if self._memory is None:
            return
        payload = {"user_id": self._user_id, "conversation_id": self._conversation_id}
        try:
            result = await self._memory.add_memory(
                [{"role": "user", "content": prompt}, {"role": "assistant", "content": reply}],
                self._user_id,
                self._conversation_id,
            )
        except Exception as exc:
            self._logger.warning("memory_add_failed", error=str(exc))
            self._event_bus.publish(ParleyEvent.MEMORY_FAILED, {**payload, "error": str(exc)})
            return
        if result.success:
            self._event_bus.publish(
                ParleyEvent.MEMORY_ADDED, {**payload, "memory_id": result.memory_id}
            )
        else:
            self._logger.warning("memory_add_failed", error=result.error)
            self._event_bus.publish(
                ParleyEvent.MEMORY_FAILED, {**payload, "error": result.error or ""}
            )

    def _publish_context(self, prepared: PreparedContext) -> None:
        payload = {"model": self._context.model, **prepared.stats.model_dump()}
        self._event_bus.publish(ParleyEvent.CONTEXT_PREPARED, payload)
        if prepared.stats.has_reached_limit:
            self._logger.warning(
                "context_limit_reached",
                total_tokens=prepared.stats.total_tokens,
                excluded=prepared.stats.messages_excluded,
            )
            self._event_bus.publish(ParleyEvent.CONTEXT_LIMIT_REACHED, payload)

    def _cancel_active(self) -> None:
        if self.stop_streaming():
            self._logger.debug("previous_stream_cancelled")

    def _append(self, message: Message) -> None:
        self._messages.append(message)
        self._event_bus.publish(
            ParleyEvent.MESSAGE_CREATED,
            {
                "message_id": message.id,
                "role": message.role,
                "conversation_id": self._conversation_id,
            },
        )
        self._changed()

    def _index_of(self, message_id: str) -> int | None:
        for i, message in enumerate(self._messages):
            if message.id == message_id:
                return i
        return None

    def _set_loading(self, session: StreamSession, value: bool) -> None:
        if self._active is None or self._active is session:
            self._is_loading = value

    def _changed(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(list(self._messages))
        except Exception as exc:
            self._logger.error("change_listener_error", error=str(exc))
