"""Reconcile provider-reported messages into deduplicated, ordered history."""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable
from uuid import NAMESPACE_URL, uuid4, uuid5

from ..errors import DedupConflict, PersistenceFailure
from . import lifecycle
from .aggregate import ConversationAggregate
from .models import (
    ConversationDelta,
    IngestFailure,
    IngestResult,
    ProviderMessage,
    normalize_phone,
    utcnow,
)
from .schemas import (
    Contact,
    Conversation,
    Message,
    MessageDirection,
    MessageStatus,
)

logger = logging.getLogger(__name__)

MESSAGE_NAMESPACE = uuid5(NAMESPACE_URL, "https://chatsync.local/messages")

_STATUS_RANK = {
    MessageStatus.SENT: 0,
    MessageStatus.DELIVERED: 1,
    MessageStatus.READ: 2,
}
_TERMINAL_STATUSES = frozenset({MessageStatus.READ, MessageStatus.FAILED})


def dedup_key_for(raw: ProviderMessage) -> str:
    """Provider id when known, else a hash of direction, body and whole seconds."""

    if raw.provider_message_id:
        return f"p:{raw.provider_message_id}"
    seconds = int(raw.timestamp.timestamp())
    digest = hashlib.sha256(
        f"{raw.direction.value}\x1f{raw.body}\x1f{seconds}".encode("utf-8")
    ).hexdigest()
    return f"h:{digest}"


def message_id_for(conversation_id: str, dedup_key: str) -> str:
    return str(uuid5(MESSAGE_NAMESPACE, f"{conversation_id}:{dedup_key}"))


def is_forward_transition(current: MessageStatus, target: MessageStatus) -> bool:
    current = MessageStatus(current)
    target = MessageStatus(target)
    if current in _TERMINAL_STATUSES:
        return False
    if target == MessageStatus.FAILED:
        return True
    return _STATUS_RANK[target] > _STATUS_RANK[current]


def default_contact_name(phone: str) -> str:
    return f"Contato {phone[-4:]}"


class MessageSynchronizer:
    """Persist channel messages exactly once and in canonical order."""

    def __init__(
        self,
        store,
        aggregate: ConversationAggregate | None = None,
        *,
        channel=None,
        contact_tags: Iterable[str] = ("whatsapp",),
        fetch_limit: int = 50,
    ) -> None:
        self._store = store
        self._aggregate = aggregate
        self._channel = channel
        self._contact_tags = set(contact_tags)
        self._fetch_limit = fetch_limit

    # ------------------------------------------------------------------
    # Ingestion

    def ingest(
        self,
        target: str,
        raw_messages: Iterable[ProviderMessage],
        *,
        contact_name: str | None = None,
    ) -> IngestResult:
        """Persist the new messages among ``raw_messages`` for ``target``.

        Each message is its own unit of work: a store failure is recorded in
        ``IngestResult.failures`` and the remaining messages are still tried.
        Messages that were stored earlier are counted in ``skipped``.
        """

        raw = list(raw_messages)
        phone = normalize_phone(target)
        result = IngestResult(target=phone)
        if not raw:
            return result

        name = contact_name or next((m.sender_name for m in raw if m.sender_name), None)
        try:
            contact, conversation = self._resolve(phone, name)
            had_inbound = self._store.has_inbound_messages(conversation.id)
        except Exception as exc:
            logger.exception("Could not resolve conversation for %s", phone)
            reason = str(PersistenceFailure(f"conversation lookup failed: {exc}"))
            result.failures = [IngestFailure(message=m, reason=reason) for m in raw]
            return result

        result.contact = contact
        result.conversation = conversation
        result.previous_last_message_at = conversation.last_message_at
        result.had_inbound_before = had_inbound

        prepared: dict[str, tuple[Message, ProviderMessage]] = {}
        for item in raw:
            message = self._build_message(conversation.id, item)
            if message.dedup_key in prepared:
                result.skipped += 1
                continue
            prepared[message.dedup_key] = (message, item)

        for message, item in sorted(prepared.values(), key=lambda pair: pair[0].sort_key):
            try:
                stored = self._store.insert_message(message)
            except DedupConflict:
                result.skipped += 1
                logger.debug("Skipping already stored message %s", message.dedup_key)
                continue
            except Exception as exc:
                failure = PersistenceFailure(f"could not store message: {exc}")
                result.failures.append(IngestFailure(message=item, reason=str(failure)))
                logger.warning(
                    "Failed to persist message %s for conversation %s: %s",
                    message.dedup_key,
                    conversation.id,
                    exc,
                )
                continue
            result.messages.append(stored)

        if result.messages:
            try:
                contact, conversation = self._apply_effects(contact, conversation, result.messages)
            except Exception:
                logger.exception("Failed to update conversation %s after ingest", conversation.id)
            result.contact = contact
            result.conversation = conversation
            self._publish(
                ConversationDelta(
                    conversation=conversation,
                    contact=contact,
                    added_messages=list(result.messages),
                )
            )

        logger.info(
            "Ingested %d new message(s) for %s (skipped=%d, failed=%d)",
            len(result.messages),
            phone,
            result.skipped,
            len(result.failures),
        )
        return result

    def update_status(self, provider_message_id: str, status: MessageStatus) -> Message | None:
        """Apply a delivery receipt; backwards transitions are ignored."""

        status = MessageStatus(status)
        message = self._store.get_message_by_provider_id(provider_message_id)
        if message is None:
            logger.debug("Receipt for unknown message %s", provider_message_id)
            return None
        if not is_forward_transition(message.status, status):
            return message
        updated = self._store.update_message_status(message.id, status)
        conversation = self._store.get_conversation(updated.conversation_id)
        if conversation is not None:
            self._publish(ConversationDelta(conversation=conversation, updated_messages=[updated]))
        return updated

    def sync_recent(self, target: str, limit: int | None = None) -> IngestResult:
        """Pull recent history from the channel and ingest it."""

        if self._channel is None:
            raise RuntimeError("no channel configured for synchronization")
        records = self._channel.fetch_recent(normalize_phone(target), limit or self._fetch_limit)
        return self.ingest(target, records)

    # ------------------------------------------------------------------
    # Helpers

    def _resolve(self, phone: str, name: str | None) -> tuple[Contact, Conversation]:
        now = utcnow()
        contact, created = self._store.get_or_create_contact(
            Contact(
                id=uuid4().hex,
                phone=phone,
                name=name or default_contact_name(phone),
                tags=set(self._contact_tags),
                created_at=now,
                updated_at=now,
            )
        )
        if created:
            logger.info("Created contact %s for %s", contact.id, phone)
        conversation, created = self._store.get_or_create_conversation(
            Conversation(id=uuid4().hex, contact_id=contact.id, created_at=now, updated_at=now)
        )
        if created:
            logger.info("Created conversation %s for contact %s", conversation.id, contact.id)
        return contact, conversation

    @staticmethod
    def _build_message(conversation_id: str, raw: ProviderMessage) -> Message:
        dedup_key = dedup_key_for(raw)
        return Message(
            id=message_id_for(conversation_id, dedup_key),
            conversation_id=conversation_id,
            provider_message_id=raw.provider_message_id,
            dedup_key=dedup_key,
            direction=raw.direction,
            body=raw.body,
            type=raw.type,
            status=raw.status,
            timestamp=raw.timestamp,
            metadata=dict(raw.metadata),
        )

    def _apply_effects(
        self, contact: Contact, conversation: Conversation, added: list[Message]
    ) -> tuple[Contact, Conversation]:
        latest = max(m.timestamp for m in added)
        conversation = self._store.touch_conversation(conversation.id, latest)
        if any(m.direction == MessageDirection.INBOUND for m in added):
            reopened = lifecycle.status_after_inbound(conversation.status)
            if reopened != conversation.status:
                logger.info(
                    "Reopening conversation %s (%s -> %s)",
                    conversation.id,
                    conversation.status.value,
                    reopened.value,
                )
                conversation = self._store.update_conversation(conversation.id, status=reopened)
            if not contact.is_online:
                contact = self._store.update_contact(contact.id, is_online=True)
        return contact, conversation

    def _publish(self, delta: ConversationDelta) -> None:
        if self._aggregate is not None:
            self._aggregate.apply(delta)
