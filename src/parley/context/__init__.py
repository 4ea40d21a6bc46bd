"""Context window budgeting."""

from parley.context.manager import TRUNCATION_MARKER, ContextManager, PreparedContext

__all__ = ["ContextManager", "PreparedContext", "TRUNCATION_MARKER"]
