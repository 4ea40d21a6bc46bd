"""Memory capability used by the conversation controller."""

from parley.memory.service import (
    InMemoryMemoryService,
    Mem0MemoryService,
    MemoryAddResult,
    MemoryRecord,
    MemoryScope,
    MemoryService,
    analyze_memory_scope,
)

__all__ = [
    "InMemoryMemoryService",
    "Mem0MemoryService",
    "MemoryAddResult",
    "MemoryRecord",
    "MemoryScope",
    "MemoryService",
    "analyze_memory_scope",
]
