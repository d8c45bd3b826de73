"""In-process read model of conversations for the dashboard."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable

from .models import ConversationDelta
from .schemas import Contact, Conversation, Message

logger = logging.getLogger(__name__)

Subscriber = Callable[[ConversationDelta], None]

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class ConversationAggregate:
    """Holds the latest conversations, contacts and messages.

    ``apply`` is the only write path. Subscribers are notified of every delta
    in the order deltas are applied; they run on the writer's thread and must
    return quickly.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._conversations: dict[str, Conversation] = {}
        self._contacts: dict[str, Contact] = {}
        self._messages: dict[str, dict[str, Message]] = {}
        self._subscribers: list[Subscriber] = []

    # ------------------------------------------------------------------
    # Writes

    def apply(self, delta: ConversationDelta) -> None:
        conversation = delta.conversation
        with self._lock:
            if delta.removed:
                self._conversations.pop(conversation.id, None)
                self._messages.pop(conversation.id, None)
            else:
                self._conversations[conversation.id] = conversation
                if delta.contact is not None:
                    self._contacts[delta.contact.id] = delta.contact
                bucket = self._messages.setdefault(conversation.id, {})
                for message in [*delta.added_messages, *delta.updated_messages]:
                    bucket[message.id] = message
            subscribers = list(self._subscribers)
            for callback in subscribers:
                try:
                    callback(delta)
                except Exception:
                    logger.exception("Conversation subscriber failed")

    def load(self, store, limit: int = 200, messages_per_conversation: int = 100) -> int:
        """Hydrate from ``store``; returns the number of conversations loaded."""

        conversations = store.list_conversations(limit=limit)
        for conversation in conversations:
            contact = store.get_contact(conversation.contact_id)
            messages = store.list_messages(conversation.id, limit=messages_per_conversation)
            self.apply(
                ConversationDelta(
                    conversation=conversation,
                    contact=contact,
                    added_messages=messages,
                )
            )
        logger.info("Loaded %d conversations into the read model", len(conversations))
        return len(conversations)

    # ------------------------------------------------------------------
    # Reads

    def snapshot(self) -> list[Conversation]:
        with self._lock:
            items = list(self._conversations.values())
        items.sort(key=lambda c: (c.last_message_at or _EPOCH, c.id), reverse=True)
        return items

    def get(self, conversation_id: str) -> Conversation | None:
        with self._lock:
            return self._conversations.get(conversation_id)

    def contact(self, contact_id: str) -> Contact | None:
        with self._lock:
            return self._contacts.get(contact_id)

    def messages(self, conversation_id: str) -> list[Message]:
        with self._lock:
            bucket = self._messages.get(conversation_id, {})
            items = list(bucket.values())
        items.sort(key=lambda m: m.sort_key)
        return items

    # ------------------------------------------------------------------
    # Subscriptions

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe
