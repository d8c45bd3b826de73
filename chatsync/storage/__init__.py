"""Persistence backends for the engine."""

from .base import ConversationStore
from .memory import InMemoryConversationStore

__all__ = ["ConversationStore", "InMemoryConversationStore"]
