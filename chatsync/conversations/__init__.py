"""Conversation synchronization, lifecycle and read model."""

from . import schemas
from .models import ConversationDelta, IngestResult, ProviderMessage

__all__ = [
    "ConversationDelta",
    "IngestResult",
    "ProviderMessage",
    "schemas",
]
