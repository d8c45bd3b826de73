"""Evaluate automation rules against inbound messages and run their actions."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from uuid import uuid4

from ..conversations.models import ConversationDelta, utcnow
from ..conversations.schemas import (
    Conversation,
    Message,
    MessageDirection,
    Sentiment,
)
from ..errors import ChatSyncError, RuleEvaluationError, RuleNotFound
from .schemas import (
    ActionType,
    AutomationExecution,
    AutomationExecutionCreate,
    AutomationRule,
    AutomationRuleCreate,
    ExecutionStatus,
    RuleAction,
    RuleTrigger,
    TriggerType,
)

logger = logging.getLogger(__name__)

# Actions that answer the customer; no knowledge-grounded reply follows them.
REPLY_ACTIONS = frozenset({ActionType.SEND_MESSAGE, ActionType.TRANSFER_AGENT})


@dataclass(frozen=True)
class AutomationAction:
    rule_id: str
    rule_name: str
    type: ActionType
    value: str

    @property
    def replies(self) -> bool:
        return self.type in REPLY_ACTIONS


@dataclass(frozen=True)
class TicketRequested:
    rule_id: str
    conversation_id: str
    message_id: str
    subject: str
    body: str
    requested_at: datetime = field(default_factory=utcnow)


@dataclass
class ExecutionOutcome:
    conversation: Conversation
    reply: Message | None = None
    execution: AutomationExecution | None = None


TicketSink = Callable[[TicketRequested], None]


def log_ticket(ticket: TicketRequested) -> None:
    logger.info(
        "Ticket requested by rule %s for conversation %s: %s",
        ticket.rule_id,
        ticket.conversation_id,
        ticket.subject,
    )


def keyword_tokens(value: str) -> list[str]:
    return [token.strip().lower() for token in (value or "").split(",") if token.strip()]


def validate_rule(trigger: RuleTrigger, action: RuleAction) -> tuple[TriggerType, ActionType]:
    """Raise :class:`RuleEvaluationError` when the rule cannot be evaluated."""

    try:
        trigger_type = TriggerType(trigger.type)
    except ValueError:
        raise RuleEvaluationError(f"unknown trigger type {trigger.type!r}") from None
    try:
        action_type = ActionType(action.type)
    except ValueError:
        raise RuleEvaluationError(f"unknown action type {action.type!r}") from None

    if trigger_type == TriggerType.KEYWORD and not keyword_tokens(trigger.value):
        raise RuleEvaluationError("keyword trigger needs at least one keyword")
    if trigger_type == TriggerType.TIME:
        try:
            minutes = int(str(trigger.value).strip())
        except ValueError:
            raise RuleEvaluationError(f"time trigger value {trigger.value!r} is not an integer") from None
        if minutes < 0:
            raise RuleEvaluationError("time trigger value must not be negative")
    if trigger_type == TriggerType.SENTIMENT:
        try:
            Sentiment(str(trigger.value).strip().lower())
        except ValueError:
            raise RuleEvaluationError(f"unknown sentiment {trigger.value!r}") from None

    if action_type != ActionType.CREATE_TICKET and not (action.value or "").strip():
        raise RuleEvaluationError(f"{action_type.value} action needs a value")
    return trigger_type, action_type


class AutomationRuleEngine:
    """First-match-wins evaluation of active rules in creation order."""

    def __init__(
        self,
        store,
        *,
        responder=None,
        aggregate=None,
        ticket_sink: TicketSink | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._responder = responder
        self._aggregate = aggregate
        self._ticket_sink = ticket_sink or log_ticket
        self._clock = clock

    # ------------------------------------------------------------------
    # Evaluation

    def evaluate(
        self, message: Message, conversation: Conversation, *, first_inbound: bool = False
    ) -> AutomationAction | None:
        """Return the action of the first matching rule, if any.

        ``conversation`` is the view from before ``message`` arrived; the time
        trigger measures the gap from its ``last_message_at``. ``first_inbound``
        tells whether no inbound message was recorded before this one, which
        a late, older message never is.
        """

        if message.direction != MessageDirection.INBOUND:
            return None
        for rule in self._store.list_rules(active_only=True):
            try:
                _, action_type = validate_rule(rule.trigger, rule.action)
                matched = self._matches(rule, message, conversation, first_inbound)
            except RuleEvaluationError as exc:
                logger.warning("Skipping malformed rule %s (%s): %s", rule.id, rule.name, exc)
                continue
            if matched:
                logger.info("Rule %s (%s) matched message %s", rule.id, rule.name, message.id)
                return AutomationAction(
                    rule_id=rule.id,
                    rule_name=rule.name,
                    type=action_type,
                    value=(rule.action.value or "").strip(),
                )
        return None

    def _matches(
        self,
        rule: AutomationRule,
        message: Message,
        conversation: Conversation,
        first_inbound: bool,
    ) -> bool:
        trigger_type = TriggerType(rule.trigger.type)
        value = str(rule.trigger.value or "").strip()
        if trigger_type == TriggerType.KEYWORD:
            body = (message.body or "").lower()
            return any(token in body for token in keyword_tokens(value))
        if trigger_type == TriggerType.FIRST_MESSAGE:
            return first_inbound
        if trigger_type == TriggerType.SENTIMENT:
            return conversation.sentiment is not None and conversation.sentiment.value == value.lower()
        if trigger_type == TriggerType.TIME:
            if conversation.last_message_at is None:
                return False
            elapsed = (message.timestamp - conversation.last_message_at).total_seconds() / 60.0
            return elapsed > int(value)
        raise RuleEvaluationError(f"unsupported trigger {trigger_type.value}")

    # ------------------------------------------------------------------
    # Execution

    def execute(
        self, action: AutomationAction, message: Message, conversation: Conversation
    ) -> ExecutionOutcome:
        """Run ``action`` and record the execution.

        Failures are recorded as failed executions and re-raised.
        """

        started = time.perf_counter()
        try:
            outcome = self._run(action, message, conversation)
        except Exception as exc:
            self._record(action, message, conversation, started, ExecutionStatus.FAILED, str(exc))
            logger.warning("Action %s of rule %s failed: %s", action.type.value, action.rule_id, exc)
            raise
        outcome.execution = self._record(
            action, message, conversation, started, ExecutionStatus.SUCCESS, None
        )
        return outcome

    def _run(
        self, action: AutomationAction, message: Message, conversation: Conversation
    ) -> ExecutionOutcome:
        if action.type == ActionType.SEND_MESSAGE:
            if self._responder is None:
                raise ChatSyncError("no responder configured for send_message")
            reply = self._responder.send_text(
                conversation, action.value, metadata={"rule_id": action.rule_id}
            )
            refreshed = self._store.get_conversation(conversation.id) or conversation
            return ExecutionOutcome(conversation=refreshed, reply=reply)
        if action.type == ActionType.TRANSFER_AGENT:
            updated = self._store.update_conversation(conversation.id, assigned_agent=action.value)
            self._publish(updated)
            return ExecutionOutcome(conversation=updated)
        if action.type == ActionType.ADD_TAG:
            if action.value in conversation.tags:
                return ExecutionOutcome(conversation=conversation)
            updated = self._store.update_conversation(
                conversation.id, tags=set(conversation.tags) | {action.value}
            )
            self._publish(updated)
            return ExecutionOutcome(conversation=updated)
        if action.type == ActionType.CREATE_TICKET:
            self._ticket_sink(
                TicketRequested(
                    rule_id=action.rule_id,
                    conversation_id=conversation.id,
                    message_id=message.id,
                    subject=action.value or action.rule_name,
                    body=message.body,
                    requested_at=self._clock(),
                )
            )
            return ExecutionOutcome(conversation=conversation)
        raise RuleEvaluationError(f"unsupported action {action.type}")

    def _record(
        self,
        action: AutomationAction,
        message: Message,
        conversation: Conversation,
        started: float,
        status: ExecutionStatus,
        error: str | None,
    ) -> AutomationExecution | None:
        payload = AutomationExecutionCreate(
            rule_id=action.rule_id,
            conversation_id=conversation.id,
            message_id=message.id,
            action_type=action.type.value,
            status=status,
            error_message=error,
            execution_time_ms=int((time.perf_counter() - started) * 1000),
        )
        try:
            return self._store.record_execution(payload)
        except Exception:
            logger.exception("Could not record execution of rule %s", action.rule_id)
            return None

    def _publish(self, conversation: Conversation) -> None:
        if self._aggregate is not None:
            self._aggregate.apply(ConversationDelta(conversation=conversation))

    # ------------------------------------------------------------------
    # Rule management

    def list_rules(self, active_only: bool = False) -> list[AutomationRule]:
        return self._store.list_rules(active_only=active_only)

    def get_rule(self, rule_id: str) -> AutomationRule:
        rule = self._store.get_rule(rule_id)
        if rule is None:
            raise RuleNotFound(rule_id)
        return rule

    def upsert_rule(self, payload: AutomationRuleCreate, rule_id: str | None = None) -> AutomationRule:
        """Create a rule, or replace the rule ``rule_id`` keeping its order."""

        validate_rule(payload.trigger, payload.action)
        now = self._clock()
        if rule_id is not None:
            existing = self.get_rule(rule_id)
            rule = existing.model_copy(
                update={
                    **payload.model_dump(exclude={"trigger", "action"}),
                    "trigger": payload.trigger,
                    "action": payload.action,
                    "updated_at": now,
                }
            )
        else:
            rule = AutomationRule(
                id=uuid4().hex,
                created_at=now,
                updated_at=now,
                **payload.model_dump(),
            )
        saved = self._store.save_rule(rule)
        logger.info("Saved automation rule %s (%s)", saved.id, saved.name)
        return saved

    def delete_rule(self, rule_id: str) -> None:
        self._store.delete_rule(rule_id)
        logger.info("Deleted automation rule %s", rule_id)

    def list_executions(self, rule_id: str, limit: int = 20) -> list[AutomationExecution]:
        self.get_rule(rule_id)
        return self._store.list_executions(rule_id, limit=limit)
