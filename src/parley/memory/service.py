"""Long-term memory capability and its adapters."""

from __future__ import annotations

import time
from collections.abc import Sequence
from typing import Any, Literal, Protocol, runtime_checkable

import httpx
import structlog
from pydantic import BaseModel, Field

from parley.ids import make_id

MEM0_BASE_URL = "https://api.mem0.ai"

_GLOBAL_KEYWORDS: tuple[str, ...] = (
    "i am",
    "my name is",
    "i like",
    "i love",
    "i hate",
    "i prefer",
    "i always",
    "i never",
    "my favorite",
    "allergic to",
    "vegetarian",
    "i work at",
    "i live in",
    "my job",
    "my profession",
    "my family",
    "i was born",
    "my birthday",
    "my age",
)

_CONVERSATION_KEYWORDS: tuple[str, ...] = (
    "right now",
    "currently",
    "today",
    "this",
    "here",
    "that",
    "screenshot",
    "image",
    "document",
    "file",
    "upload",
    "show me",
    "look at",
    "analyze",
    "explain this",
)


class MemoryRecord(BaseModel):
    """A stored memory as returned by a memory service."""

    id: str
    memory: str
    user_id: str | None = None
    conversation_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    score: float | None = None
    created_at: str | None = None


class MemoryAddResult(BaseModel):
    success: bool
    memory_id: str | None = None
    error: str | None = None


class MemoryScope(BaseModel):
    """Where a memory belongs and how much it matters."""

    scope: Literal["global", "conversation"] = "conversation"
    category: str = "context"
    importance: Literal["high", "medium", "low"] = "medium"


def analyze_memory_scope(
    messages: Sequence[dict[str, Any]],
    category: str | None = None,
) -> MemoryScope:
    """
    Classify a message exchange as a global or conversation-scoped memory.

    Personal facts and preferences ("my name is", "i prefer") are global;
    references to the current exchange ("this", "the file") keep a memory
    conversation-scoped. An explicit ``preference`` or ``fact`` category
    forces global scope with high importance.
    """
    content = " ".join(str(m.get("content", "")) for m in messages).lower()
    has_global = any(k in content for k in _GLOBAL_KEYWORDS)
    has_conversation = any(k in content for k in _CONVERSATION_KEYWORDS)

    scope = MemoryScope()
    if has_global and not has_conversation:
        scope = MemoryScope(scope="global", category="preference", importance="high")
    elif has_global:
        scope = MemoryScope(scope="global", category="fact", importance="medium")

    if category:
        if category in ("preference", "fact"):
            return MemoryScope(scope="global", category=category, importance="high")
        return scope.model_copy(update={"category": category})
    return scope


@runtime_checkable
class MemoryService(Protocol):
    """Narrow capability the conversation layer needs from a memory backend."""

    async def add_memory(
        self,
        messages: Sequence[dict[str, Any]],
        user_id: str,
        conversation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> MemoryAddResult: ...

    async def search(self, query: str, user_id: str, *, limit: int = 5) -> list[MemoryRecord]: ...

    async def get_all(
        self, user_id: str, conversation_id: str | None = None
    ) -> list[MemoryRecord]: ...

    async def delete(self, memory_id: str) -> bool: ...


class InMemoryMemoryService:
    """
    Process-local memory store.

    Search ranks memories by the fraction of query words they contain.
    Useful for tests and for running without a hosted memory service.
    """

    def __init__(self) -> None:
        self._records: dict[str, MemoryRecord] = {}

    async def add_memory(
        self,
        messages: Sequence[dict[str, Any]],
        user_id: str,
        conversation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> MemoryAddResult:
        text = "\n".join(str(m.get("content", "")) for m in messages if m.get("content"))
        if not text.strip():
            return MemoryAddResult(success=False, error="Nothing to remember")
        scope = analyze_memory_scope(messages, (metadata or {}).get("category"))
        record = MemoryRecord(
            id=make_id("mem"),
            memory=text,
            user_id=user_id,
            conversation_id=conversation_id if scope.scope == "conversation" else None,
            metadata={**scope.model_dump(), **(metadata or {})},
            created_at=str(int(time.time() * 1000)),
        )
        self._records[record.id] = record
        return MemoryAddResult(success=True, memory_id=record.id)

    async def search(self, query: str, user_id: str, *, limit: int = 5) -> list[MemoryRecord]:
        words = {w for w in query.lower().split() if w}
        if not words:
            return []
        scored: list[MemoryRecord] = []
        for record in self._records.values():
            if record.user_id != user_id:
                continue
            text = record.memory.lower()
            score = sum(1 for w in words if w in text) / len(words)
            if score > 0:
                scored.append(record.model_copy(update={"score": score}))
        scored.sort(key=lambda r: r.score or 0.0, reverse=True)
        return scored[:limit]

    async def get_all(self, user_id: str, conversation_id: str | None = None) -> list[MemoryRecord]:
        return [
            r
            for r in self._records.values()
            if r.user_id == user_id
            and (conversation_id is None or r.conversation_id == conversation_id)
        ]

    async def delete(self, memory_id: str) -> bool:
        return self._records.pop(memory_id, None) is not None


class Mem0MemoryService:
    """
    Adapter for the hosted Mem0 REST API.

    Failures are logged and reported as unsuccessful results or empty lists;
    a memory outage must never break a chat turn.

    Example::

        async with Mem0MemoryService(api_key=os.environ["MEM0_API_KEY"]) as memory:
            await memory.add_memory([{"role": "user", "content": "I prefer tea"}], "user_1")
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = MEM0_BASE_URL,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=30.0)
        self._headers = {"Authorization": f"Token {api_key}"}
        self._logger = structlog.get_logger("parley.memory.mem0")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> Mem0MemoryService:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def add_memory(
        self,
        messages: Sequence[dict[str, Any]],
        user_id: str,
        conversation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> MemoryAddResult:
        scope = analyze_memory_scope(messages, (metadata or {}).get("category"))
        body: dict[str, Any] = {
            "messages": [{"role": m["role"], "content": m["content"]} for m in messages],
            "user_id": user_id,
            "version": "v2",
            "metadata": {
                **scope.model_dump(),
                **(metadata or {}),
            },
        }
        if conversation_id:
            body["metadata"]["source_conversation_id"] = conversation_id
            if scope.scope == "conversation":
                body["run_id"] = conversation_id

        try:
            response = await self._client.post("/v1/memories/", json=body, headers=self._headers)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            self._logger.warning("memory_add_failed", user_id=user_id, error=str(exc))
            return MemoryAddResult(success=False, error=str(exc))

        first = data[0] if isinstance(data, list) and data else data
        memory_id = first.get("id") if isinstance(first, dict) else None
        return MemoryAddResult(success=True, memory_id=memory_id)

    async def search(self, query: str, user_id: str, *, limit: int = 5) -> list[MemoryRecord]:
        body = {"query": query, "user_id": user_id, "limit": limit}
        try:
            response = await self._client.post(
                "/v1/memories/search/", json=body, headers=self._headers
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            self._logger.warning("memory_search_failed", user_id=user_id, error=str(exc))
            return []
        return [self._to_record(item) for item in self._items(data)][:limit]

    async def get_all(self, user_id: str, conversation_id: str | None = None) -> list[MemoryRecord]:
        params = {"user_id": user_id}
        if conversation_id:
            params["run_id"] = conversation_id
        try:
            response = await self._client.get(
                "/v1/memories/", params=params, headers=self._headers
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            self._logger.warning("memory_list_failed", user_id=user_id, error=str(exc))
            return []
        return [self._to_record(item) for item in self._items(data)]

    async def delete(self, memory_id: str) -> bool:
        try:
            response = await self._client.delete(
                f"/v1/memories/{memory_id}/", headers=self._headers
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self._logger.warning("memory_delete_failed", memory_id=memory_id, error=str(exc))
            return False
        return True

    @staticmethod
    def _items(data: Any) -> list[dict[str, Any]]:
        if isinstance(data, dict):
            data = data.get("results", [])
        return [item for item in data if isinstance(item, dict)]

    @staticmethod
    def _to_record(item: dict[str, Any]) -> MemoryRecord:
        return MemoryRecord(
            id=str(item.get("id", "")),
            memory=str(item.get("memory", "")),
            user_id=item.get("user_id"),
            conversation_id=item.get("run_id"),
            metadata=item.get("metadata") or {},
            score=item.get("score"),
            created_at=item.get("created_at"),
        )
