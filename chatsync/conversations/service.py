"""High-level conversation flow orchestration."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from ..automation.engine import AutomationAction, AutomationRuleEngine
from ..errors import ChatSyncError, ConversationNotFound
from ..nlp import NlpPipeline
from . import lifecycle, schemas
from .aggregate import ConversationAggregate
from .models import ConversationDelta, InboundEvent, IngestResult, ProviderMessage, StatusReceipt
from .synchronizer import MessageSynchronizer

logger = logging.getLogger(__name__)


@dataclass
class ProcessingReport:
    """What happened while handling one inbound event."""

    ingest: IngestResult
    actions: list[AutomationAction] = field(default_factory=list)
    replies: list[schemas.Message] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def _latest(current: datetime | None, candidate: datetime) -> datetime:
    if current is None or candidate > current:
        return candidate
    return current


class ConversationService:
    """Coordinates synchronization, automation and automated replies."""

    def __init__(
        self,
        store,
        synchronizer: MessageSynchronizer,
        engine: AutomationRuleEngine,
        responder,
        aggregate: ConversationAggregate,
        *,
        nlp_pipeline: NlpPipeline | None = None,
        auto_reply: bool = True,
    ) -> None:
        self._store = store
        self._synchronizer = synchronizer
        self._engine = engine
        self._responder = responder
        self._aggregate = aggregate
        self._nlp = nlp_pipeline or NlpPipeline()
        self.auto_reply = auto_reply

    # ------------------------------------------------------------------
    # Incoming message processing

    def handle_event(self, event: InboundEvent) -> ProcessingReport:
        return self.handle_inbound(event.target, event.messages, contact_name=event.contact_name)

    def handle_inbound(
        self,
        target: str,
        raw_messages: Iterable[ProviderMessage],
        *,
        contact_name: str | None = None,
    ) -> ProcessingReport:
        """Persist new messages, then run automation once per new inbound message.

        At most one automated reply is produced per inbound message: a rule
        that replies (``send_message``/``transfer_agent``) suppresses the
        knowledge-grounded reply. Reply failures are reported, never raised;
        the inbound message stays persisted either way.
        """

        result = self._synchronizer.ingest(target, raw_messages, contact_name=contact_name)
        report = ProcessingReport(ingest=result)
        conversation = result.conversation
        if conversation is None:
            return report

        previous = result.previous_last_message_at
        first_inbound = not result.had_inbound_before
        for message in result.messages:
            if message.direction != schemas.MessageDirection.INBOUND:
                previous = _latest(previous, message.timestamp)
                continue
            conversation = self._refresh_sentiment(conversation, message)
            view = conversation.model_copy(update={"last_message_at": previous})
            previous = _latest(previous, message.timestamp)
            conversation = self._automate(conversation, view, message, report, first_inbound)
            first_inbound = False
        return report

    def _automate(
        self,
        conversation: schemas.Conversation,
        view: schemas.Conversation,
        message: schemas.Message,
        report: ProcessingReport,
        first_inbound: bool,
    ) -> schemas.Conversation:
        action = self._engine.evaluate(message, view, first_inbound=first_inbound)
        if action is not None:
            report.actions.append(action)
            try:
                outcome = self._engine.execute(action, message, conversation)
            except ChatSyncError as exc:
                report.errors.append(f"{action.type.value}: {exc}")
            else:
                conversation = outcome.conversation
                if outcome.reply is not None:
                    report.replies.append(outcome.reply)
            if action.replies:
                return conversation

        if not self._should_auto_reply(conversation, message):
            return conversation
        try:
            reply = self._responder.respond(conversation, message.body)
        except ChatSyncError as exc:
            logger.warning("Automated reply for %s failed: %s", conversation.id, exc)
            report.errors.append(f"rag_response: {exc}")
        else:
            report.replies.append(reply)
            conversation = self._store.get_conversation(conversation.id) or conversation
        return conversation

    def _should_auto_reply(
        self, conversation: schemas.Conversation, message: schemas.Message
    ) -> bool:
        if not self.auto_reply:
            return False
        if message.type != schemas.MessageType.TEXT or not message.body.strip():
            return False
        # A human agent owns the conversation once it has been transferred.
        return conversation.assigned_agent is None

    def _refresh_sentiment(
        self, conversation: schemas.Conversation, message: schemas.Message
    ) -> schemas.Conversation:
        if message.type != schemas.MessageType.TEXT or not message.body.strip():
            return conversation
        label = self._nlp.sentiment_label(message.body)
        if label == conversation.sentiment:
            return conversation
        try:
            updated = self._store.update_conversation(conversation.id, sentiment=label)
        except Exception:
            logger.exception("Could not update sentiment of %s", conversation.id)
            return conversation
        self._publish(updated)
        return updated

    def apply_receipt(self, receipt: StatusReceipt) -> schemas.Message | None:
        return self._synchronizer.update_status(receipt.provider_message_id, receipt.status)

    def sync_recent(self, target: str, limit: int | None = None) -> IngestResult:
        return self._synchronizer.sync_recent(target, limit)

    # ------------------------------------------------------------------
    # Lifecycle

    def mark_pending(self, conversation_id: str) -> schemas.Conversation:
        return self._transition(conversation_id, schemas.ConversationStatus.PENDING)

    def resolve(self, conversation_id: str) -> schemas.Conversation:
        return self._transition(conversation_id, schemas.ConversationStatus.RESOLVED)

    def archive(self, conversation_id: str) -> schemas.Conversation:
        return self._transition(conversation_id, schemas.ConversationStatus.ARCHIVED)

    def activate(self, conversation_id: str) -> schemas.Conversation:
        return self._transition(conversation_id, schemas.ConversationStatus.ACTIVE)

    def _transition(
        self, conversation_id: str, target: schemas.ConversationStatus
    ) -> schemas.Conversation:
        conversation = self._require(conversation_id)
        lifecycle.ensure_transition(conversation.status, target)
        if conversation.status == target:
            return conversation
        updated = self._store.update_conversation(conversation_id, status=target)
        logger.info(
            "Conversation %s moved %s -> %s", conversation_id, conversation.status.value, target.value
        )
        self._publish(updated)
        return updated

    def assign_agent(self, conversation_id: str, agent: str | None) -> schemas.Conversation:
        self._require(conversation_id)
        updated = self._store.update_conversation(conversation_id, assigned_agent=agent)
        self._publish(updated)
        return updated

    def purge_conversation(self, conversation_id: str) -> None:
        conversation = self._require(conversation_id)
        self._store.delete_conversation(conversation_id)
        logger.info("Purged conversation %s", conversation_id)
        self._aggregate.apply(ConversationDelta(conversation=conversation, removed=True))

    # ------------------------------------------------------------------
    # Queries

    def list_conversations(
        self, limit: int = 50, status: schemas.ConversationStatus | None = None
    ) -> schemas.ConversationList:
        items = [
            self._summary(conversation)
            for conversation in self._store.list_conversations(limit=limit, status=status)
        ]
        return schemas.ConversationList(items=items, total=len(items))

    def get_conversation(self, conversation_id: str) -> schemas.ConversationDetail:
        conversation = self._require(conversation_id)
        summary = self._summary(conversation)
        return schemas.ConversationDetail(
            **summary.model_dump(), messages=self._store.list_messages(conversation_id)
        )

    def list_messages(self, conversation_id: str, limit: int | None = None) -> schemas.MessageList:
        self._require(conversation_id)
        items = self._store.list_messages(conversation_id, limit=limit)
        return schemas.MessageList(items=items, total=len(items))

    def _summary(self, conversation: schemas.Conversation) -> schemas.ConversationSummary:
        return schemas.ConversationSummary(
            **conversation.model_dump(), contact=self._store.get_contact(conversation.contact_id)
        )

    def _require(self, conversation_id: str) -> schemas.Conversation:
        conversation = self._store.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFound(conversation_id)
        return conversation

    def _publish(self, conversation: schemas.Conversation) -> None:
        self._aggregate.apply(ConversationDelta(conversation=conversation))
