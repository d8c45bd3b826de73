"""Persistence contract for contacts, conversations, messages, knowledge
entries and automation rules."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional, Protocol, Tuple

from ..automation.schemas import (
    AutomationExecution,
    AutomationExecutionCreate,
    AutomationRule,
)
from ..conversations.schemas import (
    Contact,
    Conversation,
    ConversationStatus,
    Message,
    MessageStatus,
)
from ..knowledge.schemas import KnowledgeEntry

# Columns callers may change through ``update_conversation``.
CONVERSATION_MUTABLE_FIELDS = frozenset(
    {"status", "priority", "sentiment", "assigned_agent", "tags"}
)
CONTACT_MUTABLE_FIELDS = frozenset({"name", "tags", "is_online", "metadata"})


class ConversationStore(Protocol):
    """Durable, idempotent persistence used by the engine.

    ``insert_message`` is a compare-and-insert keyed by
    ``(conversation_id, dedup_key)`` and raises
    :class:`~chatsync.errors.DedupConflict` when the key already exists.
    ``get_or_create_*`` calls are atomic and return ``(record, created)``.
    """

    # Contacts ----------------------------------------------------------------
    def get_or_create_contact(self, candidate: Contact) -> Tuple[Contact, bool]: ...

    def get_contact(self, contact_id: str) -> Optional[Contact]: ...

    def get_contact_by_phone(self, phone: str) -> Optional[Contact]: ...

    def update_contact(self, contact_id: str, **changes: Any) -> Contact: ...

    def delete_contact(self, contact_id: str) -> None: ...

    # Conversations -----------------------------------------------------------
    def get_or_create_conversation(
        self, candidate: Conversation
    ) -> Tuple[Conversation, bool]: ...

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]: ...

    def get_conversation_by_contact(self, contact_id: str) -> Optional[Conversation]: ...

    def list_conversations(
        self, limit: int = 50, status: Optional[ConversationStatus] = None
    ) -> List[Conversation]: ...

    def update_conversation(self, conversation_id: str, **changes: Any) -> Conversation: ...

    def touch_conversation(
        self, conversation_id: str, last_message_at: datetime
    ) -> Conversation: ...

    def delete_conversation(self, conversation_id: str) -> None: ...

    # Messages ----------------------------------------------------------------
    def insert_message(self, message: Message) -> Message: ...

    def list_messages(
        self, conversation_id: str, limit: Optional[int] = None
    ) -> List[Message]: ...

    def get_message_by_provider_id(self, provider_message_id: str) -> Optional[Message]: ...

    def update_message_status(self, message_id: str, status: MessageStatus) -> Message: ...

    def has_inbound_messages(self, conversation_id: str) -> bool: ...

    # Knowledge entries -------------------------------------------------------
    def create_knowledge_entry(self, entry: KnowledgeEntry) -> KnowledgeEntry: ...

    def get_knowledge_entry(self, entry_id: str) -> Optional[KnowledgeEntry]: ...

    def list_knowledge_entries(self, active_only: bool = False) -> List[KnowledgeEntry]: ...

    def update_knowledge_entry(self, entry: KnowledgeEntry) -> KnowledgeEntry: ...

    def delete_knowledge_entry(self, entry_id: str) -> None: ...

    # Automation rules --------------------------------------------------------
    def save_rule(self, rule: AutomationRule) -> AutomationRule: ...

    def get_rule(self, rule_id: str) -> Optional[AutomationRule]: ...

    def list_rules(self, active_only: bool = False) -> List[AutomationRule]: ...

    def delete_rule(self, rule_id: str) -> None: ...

    def record_execution(self, payload: AutomationExecutionCreate) -> AutomationExecution: ...

    def list_executions(self, rule_id: str, limit: int = 20) -> List[AutomationExecution]: ...


def check_fields(changes: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = set(changes) - allowed
    if unknown:
        raise ValueError(f"unsupported fields: {', '.join(sorted(unknown))}")
