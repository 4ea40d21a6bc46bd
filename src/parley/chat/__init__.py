"""Conversation controller."""

from parley.chat.controller import STOPPED_FALLBACK, ChatController

__all__ = ["ChatController", "STOPPED_FALLBACK"]
