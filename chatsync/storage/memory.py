"""In-memory store (useful for testing and sandbox environments)."""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from ..automation.schemas import (
    AutomationExecution,
    AutomationExecutionCreate,
    AutomationRule,
)
from ..conversations.models import utcnow
from ..conversations.schemas import (
    Contact,
    Conversation,
    ConversationStatus,
    Message,
    MessageDirection,
    MessageStatus,
)
from ..errors import (
    ContactInUse,
    ContactNotFound,
    ConversationNotFound,
    DedupConflict,
    KnowledgeEntryNotFound,
    RuleNotFound,
)
from ..knowledge.schemas import KnowledgeEntry
from .base import CONTACT_MUTABLE_FIELDS, CONVERSATION_MUTABLE_FIELDS, check_fields


def _copy(model):
    return model.model_copy(deep=True)


class InMemoryConversationStore:
    """Thread-safe in-memory implementation of ``ConversationStore``.

    Records are copied on the way in and out so callers never share mutable
    state with the store.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._contacts: Dict[str, Contact] = {}
        self._contacts_by_phone: Dict[str, str] = {}
        self._conversations: Dict[str, Conversation] = {}
        self._conversations_by_contact: Dict[str, str] = {}
        self._messages: Dict[str, Message] = {}
        self._dedup_index: Dict[Tuple[str, str], str] = {}
        self._knowledge: Dict[str, KnowledgeEntry] = {}
        self._rules: Dict[str, AutomationRule] = {}
        self._executions: List[AutomationExecution] = []
        self._next_ordinal = 1

    # Contacts ----------------------------------------------------------------
    def get_or_create_contact(self, candidate: Contact) -> Tuple[Contact, bool]:
        with self._lock:
            existing_id = self._contacts_by_phone.get(candidate.phone)
            if existing_id is not None:
                return _copy(self._contacts[existing_id]), False
            self._contacts[candidate.id] = _copy(candidate)
            self._contacts_by_phone[candidate.phone] = candidate.id
            return _copy(candidate), True

    def get_contact(self, contact_id: str) -> Optional[Contact]:
        with self._lock:
            contact = self._contacts.get(contact_id)
            return _copy(contact) if contact else None

    def get_contact_by_phone(self, phone: str) -> Optional[Contact]:
        with self._lock:
            contact_id = self._contacts_by_phone.get(phone)
            return _copy(self._contacts[contact_id]) if contact_id else None

    def update_contact(self, contact_id: str, **changes: Any) -> Contact:
        check_fields(changes, CONTACT_MUTABLE_FIELDS)
        with self._lock:
            contact = self._contacts.get(contact_id)
            if contact is None:
                raise ContactNotFound(contact_id)
            updated = contact.model_copy(update={**changes, "updated_at": utcnow()}, deep=True)
            self._contacts[contact_id] = updated
            return _copy(updated)

    def delete_contact(self, contact_id: str) -> None:
        with self._lock:
            contact = self._contacts.get(contact_id)
            if contact is None:
                raise ContactNotFound(contact_id)
            if contact_id in self._conversations_by_contact:
                raise ContactInUse(contact_id)
            del self._contacts[contact_id]
            self._contacts_by_phone.pop(contact.phone, None)

    # Conversations -----------------------------------------------------------
    def get_or_create_conversation(self, candidate: Conversation) -> Tuple[Conversation, bool]:
        with self._lock:
            if candidate.contact_id not in self._contacts:
                raise ContactNotFound(candidate.contact_id)
            existing_id = self._conversations_by_contact.get(candidate.contact_id)
            if existing_id is not None:
                return _copy(self._conversations[existing_id]), False
            self._conversations[candidate.id] = _copy(candidate)
            self._conversations_by_contact[candidate.contact_id] = candidate.id
            return _copy(candidate), True

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        with self._lock:
            conversation = self._conversations.get(conversation_id)
            return _copy(conversation) if conversation else None

    def get_conversation_by_contact(self, contact_id: str) -> Optional[Conversation]:
        with self._lock:
            conversation_id = self._conversations_by_contact.get(contact_id)
            return _copy(self._conversations[conversation_id]) if conversation_id else None

    def list_conversations(
        self, limit: int = 50, status: Optional[ConversationStatus] = None
    ) -> List[Conversation]:
        with self._lock:
            items = [
                c for c in self._conversations.values() if status is None or c.status == status
            ]
        items.sort(
            key=lambda c: (c.last_message_at or c.created_at, c.id),
            reverse=True,
        )
        return [_copy(c) for c in items[:limit]]

    def update_conversation(self, conversation_id: str, **changes: Any) -> Conversation:
        check_fields(changes, CONVERSATION_MUTABLE_FIELDS)
        with self._lock:
            conversation = self._require_conversation(conversation_id)
            updated = conversation.model_copy(
                update={**changes, "updated_at": utcnow()}, deep=True
            )
            self._conversations[conversation_id] = updated
            return _copy(updated)

    def touch_conversation(self, conversation_id: str, last_message_at: datetime) -> Conversation:
        with self._lock:
            conversation = self._require_conversation(conversation_id)
            current = conversation.last_message_at
            if current is not None and current >= last_message_at:
                return _copy(conversation)
            updated = conversation.model_copy(
                update={"last_message_at": last_message_at, "updated_at": utcnow()}
            )
            self._conversations[conversation_id] = updated
            return _copy(updated)

    def delete_conversation(self, conversation_id: str) -> None:
        with self._lock:
            conversation = self._require_conversation(conversation_id)
            for message_id in [
                m.id for m in self._messages.values() if m.conversation_id == conversation_id
            ]:
                message = self._messages.pop(message_id)
                self._dedup_index.pop((conversation_id, message.dedup_key), None)
            del self._conversations[conversation_id]
            self._conversations_by_contact.pop(conversation.contact_id, None)

    def _require_conversation(self, conversation_id: str) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise ConversationNotFound(conversation_id)
        return conversation

    # Messages ----------------------------------------------------------------
    def insert_message(self, message: Message) -> Message:
        key = (message.conversation_id, message.dedup_key)
        with self._lock:
            self._require_conversation(message.conversation_id)
            if key in self._dedup_index:
                raise DedupConflict(message.conversation_id, message.dedup_key)
            self._messages[message.id] = _copy(message)
            self._dedup_index[key] = message.id
            return _copy(message)

    def list_messages(self, conversation_id: str, limit: Optional[int] = None) -> List[Message]:
        with self._lock:
            items = [m for m in self._messages.values() if m.conversation_id == conversation_id]
        items.sort(key=lambda m: m.sort_key)
        if limit is not None:
            items = items[-limit:]
        return [_copy(m) for m in items]

    def get_message_by_provider_id(self, provider_message_id: str) -> Optional[Message]:
        with self._lock:
            for message in self._messages.values():
                if message.provider_message_id == provider_message_id:
                    return _copy(message)
        return None

    def update_message_status(self, message_id: str, status: MessageStatus) -> Message:
        with self._lock:
            message = self._messages.get(message_id)
            if message is None:
                raise KeyError(message_id)
            updated = message.model_copy(update={"status": status})
            self._messages[message_id] = updated
            return _copy(updated)

    def has_inbound_messages(self, conversation_id: str) -> bool:
        with self._lock:
            return any(
                m.conversation_id == conversation_id and m.direction == MessageDirection.INBOUND
                for m in self._messages.values()
            )

    # Knowledge entries -------------------------------------------------------
    def create_knowledge_entry(self, entry: KnowledgeEntry) -> KnowledgeEntry:
        with self._lock:
            self._knowledge[entry.id] = _copy(entry)
            return _copy(entry)

    def get_knowledge_entry(self, entry_id: str) -> Optional[KnowledgeEntry]:
        with self._lock:
            entry = self._knowledge.get(entry_id)
            return _copy(entry) if entry else None

    def list_knowledge_entries(self, active_only: bool = False) -> List[KnowledgeEntry]:
        with self._lock:
            items = [e for e in self._knowledge.values() if e.is_active or not active_only]
        items.sort(key=lambda e: e.created_at)
        return [_copy(e) for e in items]

    def update_knowledge_entry(self, entry: KnowledgeEntry) -> KnowledgeEntry:
        with self._lock:
            if entry.id not in self._knowledge:
                raise KnowledgeEntryNotFound(entry.id)
            self._knowledge[entry.id] = _copy(entry)
            return _copy(entry)

    def delete_knowledge_entry(self, entry_id: str) -> None:
        with self._lock:
            if self._knowledge.pop(entry_id, None) is None:
                raise KnowledgeEntryNotFound(entry_id)

    # Automation rules --------------------------------------------------------
    def save_rule(self, rule: AutomationRule) -> AutomationRule:
        with self._lock:
            existing = self._rules.get(rule.id)
            if existing is not None:
                stored = rule.model_copy(
                    update={
                        "ordinal": existing.ordinal,
                        "execution_count": existing.execution_count,
                        "last_executed_at": existing.last_executed_at,
                        "created_at": existing.created_at,
                    },
                    deep=True,
                )
            else:
                stored = rule.model_copy(update={"ordinal": self._next_ordinal}, deep=True)
                self._next_ordinal += 1
            self._rules[rule.id] = stored
            return _copy(stored)

    def get_rule(self, rule_id: str) -> Optional[AutomationRule]:
        with self._lock:
            rule = self._rules.get(rule_id)
            return _copy(rule) if rule else None

    def list_rules(self, active_only: bool = False) -> List[AutomationRule]:
        with self._lock:
            items = [r for r in self._rules.values() if r.is_active or not active_only]
        items.sort(key=lambda r: r.ordinal or 0)
        return [_copy(r) for r in items]

    def delete_rule(self, rule_id: str) -> None:
        with self._lock:
            if self._rules.pop(rule_id, None) is None:
                raise RuleNotFound(rule_id)

    def record_execution(self, payload: AutomationExecutionCreate) -> AutomationExecution:
        now = utcnow()
        execution = AutomationExecution(id=uuid4().hex, executed_at=now, **payload.model_dump())
        with self._lock:
            self._executions.append(execution)
            rule = self._rules.get(payload.rule_id)
            if rule is not None:
                self._rules[rule.id] = rule.model_copy(
                    update={
                        "execution_count": rule.execution_count + 1,
                        "last_executed_at": now,
                    }
                )
        return _copy(execution)

    def list_executions(self, rule_id: str, limit: int = 20) -> List[AutomationExecution]:
        with self._lock:
            items = [e for e in self._executions if e.rule_id == rule_id]
        items.sort(key=lambda e: e.executed_at, reverse=True)
        return [_copy(e) for e in items[:limit]]
