"""Error taxonomy shared by the synchronization and automation engine."""

from __future__ import annotations


class ChatSyncError(RuntimeError):
    """Base class for every error raised by the engine."""


class DedupConflict(ChatSyncError):
    """Raised by a store when a message with the same dedup key already exists.

    Callers treat this as a skip: the message was ingested earlier.
    """

    def __init__(self, conversation_id: str, dedup_key: str) -> None:
        super().__init__(f"message {dedup_key!r} already stored for {conversation_id}")
        self.conversation_id = conversation_id
        self.dedup_key = dedup_key


class PersistenceFailure(ChatSyncError):
    """A single item could not be written to the store."""


class GenerationFailed(ChatSyncError):
    """An automated reply could not be produced or delivered."""


class RuleEvaluationError(ChatSyncError):
    """An automation rule is malformed and cannot be evaluated."""


class ChannelUnavailable(ChatSyncError):
    """The messaging channel could not be reached."""


class InvalidTransition(ChatSyncError):
    """A lifecycle transition is not allowed from the current status."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"cannot move conversation from {current} to {target}")
        self.current = current
        self.target = target


class ConversationNotFound(ChatSyncError):
    pass


class ContactNotFound(ChatSyncError):
    pass


class RuleNotFound(ChatSyncError):
    pass


class KnowledgeEntryNotFound(ChatSyncError):
    pass


class ContactInUse(ChatSyncError):
    """A contact cannot be removed while it still has a conversation."""
