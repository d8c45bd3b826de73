from datetime import timedelta

import pytest

from chatsync.automation.engine import AutomationRuleEngine, validate_rule
from chatsync.automation.schemas import (
    ActionType,
    AutomationRule,
    AutomationRuleCreate,
    ExecutionStatus,
    RuleAction,
    RuleTrigger,
)
from chatsync.conversations.schemas import (
    Conversation,
    Message,
    MessageDirection,
    Sentiment,
)
from chatsync.errors import ChatSyncError, GenerationFailed, RuleEvaluationError, RuleNotFound

from conftest import PHONE, T0


def _conversation(**overrides):
    data = {"id": "c1", "contact_id": "k1", "created_at": T0, "updated_at": T0}
    data.update(overrides)
    return Conversation(**data)


def _message(body, *, minutes=0, direction=MessageDirection.INBOUND, message_id="msg"):
    return Message(
        id=message_id,
        conversation_id="c1",
        dedup_key=f"p:{message_id}",
        direction=direction,
        body=body,
        timestamp=T0 + timedelta(minutes=minutes),
    )


def test_keyword_rule_matches_case_insensitive_substring(engine, add_rule):
    rule = add_rule("saudação", "keyword", "oi,olá", "send_message", "Olá! Como posso ajudar?")

    action = engine.automation.evaluate(_message("Oi, bom dia"), _conversation())
    assert action.rule_id == rule.id
    assert action.type == ActionType.SEND_MESSAGE
    assert action.value == "Olá! Como posso ajudar?"
    assert action.replies

    assert engine.automation.evaluate(_message("bom dia"), _conversation()) is None


def test_first_matching_rule_in_creation_order_wins(engine, add_rule):
    first = add_rule("tag", "keyword", "pedido", "add_tag", "vendas")
    add_rule("reply", "keyword", "pedido", "send_message", "Vou verificar seu pedido.")

    action = engine.automation.evaluate(_message("meu pedido atrasou"), _conversation())
    assert action.rule_id == first.id
    assert not action.replies


def test_update_keeps_rule_position(engine, add_rule):
    first = add_rule("tag", "keyword", "pedido", "add_tag", "vendas")
    add_rule("reply", "keyword", "pedido", "send_message", "Vou verificar.")

    engine.automation.upsert_rule(
        AutomationRuleCreate(
            name="tag renamed",
            trigger=RuleTrigger(type="keyword", value="pedido"),
            action=RuleAction(type="add_tag", value="pedidos"),
        ),
        rule_id=first.id,
    )
    rules = engine.automation.list_rules()
    assert [r.id for r in rules][0] == first.id
    assert rules[0].name == "tag renamed"


def test_inactive_rules_are_ignored(engine, add_rule):
    add_rule("off", "keyword", "oi", "send_message", "x", is_active=False)
    assert engine.automation.evaluate(_message("oi"), _conversation()) is None


def test_outbound_messages_never_trigger(engine, add_rule):
    add_rule("saudação", "keyword", "oi", "send_message", "x")
    message = _message("oi", direction=MessageDirection.OUTBOUND)
    assert engine.automation.evaluate(message, _conversation()) is None


def test_time_rule_uses_gap_since_previous_message(engine, add_rule):
    add_rule("retorno", "time", "30", "send_message", "Que bom ter você de volta!")
    previous = _conversation(last_message_at=T0)

    assert engine.automation.evaluate(_message("voltei", minutes=40), previous) is not None
    assert engine.automation.evaluate(_message("voltei", minutes=30), previous) is None
    assert engine.automation.evaluate(_message("primeira"), _conversation()) is None


def test_sentiment_rule(engine, add_rule):
    add_rule("escalar", "sentiment", "negative", "transfer_agent", "supervisor")
    negative = _conversation(sentiment=Sentiment.NEGATIVE)

    assert engine.automation.evaluate(_message("isso é péssimo"), negative).value == "supervisor"
    assert engine.automation.evaluate(_message("ok"), _conversation()) is None


def test_first_message_rule(engine, add_rule, make_message):
    add_rule("boas-vindas", "first_message", "", "add_tag", "novo")
    result = engine.synchronizer.ingest(
        PHONE,
        [make_message("oi", provider_id="a"), make_message("tudo bem?", minutes=1, provider_id="b")],
    )
    first, second = result.messages
    view = result.conversation

    assert engine.automation.evaluate(first, view, first_inbound=True).value == "novo"
    assert engine.automation.evaluate(first, view) is None
    assert engine.automation.evaluate(second, view, first_inbound=False) is None


def test_malformed_rule_is_skipped(engine, store, add_rule, caplog):
    store.save_rule(
        AutomationRule(
            id="broken",
            name="broken",
            trigger=RuleTrigger(type="time", value="soon"),
            action=RuleAction(type="send_message", value="x"),
            created_at=T0,
            updated_at=T0,
        )
    )
    good = add_rule("ok", "keyword", "oi", "add_tag", "lead")

    with caplog.at_level("WARNING", logger="chatsync.automation.engine"):
        action = engine.automation.evaluate(_message("oi"), _conversation(last_message_at=T0))
    assert action.rule_id == good.id
    assert "broken" in caplog.text


@pytest.mark.parametrize(
    "trigger,action",
    [
        (RuleTrigger(type="weather", value="rain"), RuleAction(type="add_tag", value="x")),
        (RuleTrigger(type="keyword", value=" , "), RuleAction(type="add_tag", value="x")),
        (RuleTrigger(type="time", value="-5"), RuleAction(type="add_tag", value="x")),
        (RuleTrigger(type="sentiment", value="furious"), RuleAction(type="add_tag", value="x")),
        (RuleTrigger(type="keyword", value="oi"), RuleAction(type="send_message", value="")),
        (RuleTrigger(type="keyword", value="oi"), RuleAction(type="fax", value="x")),
    ],
)
def test_validate_rule_rejects_malformed(trigger, action):
    with pytest.raises(RuleEvaluationError):
        validate_rule(trigger, action)


def test_upsert_rejects_malformed_rule(engine):
    with pytest.raises(RuleEvaluationError):
        engine.automation.upsert_rule(
            AutomationRuleCreate(
                name="bad",
                trigger=RuleTrigger(type="time", value="abc"),
                action=RuleAction(type="add_tag", value="x"),
            )
        )
    assert engine.automation.list_rules() == []


def _ingested(engine, make_message, body="oi"):
    result = engine.synchronizer.ingest(PHONE, [make_message(body, provider_id="m1")])
    return result.messages[0], result.conversation


def test_add_tag_is_idempotent_and_recorded(engine, add_rule, make_message):
    rule = add_rule("lead", "keyword", "oi", "add_tag", "lead")
    message, conversation = _ingested(engine, make_message)
    action = engine.automation.evaluate(message, conversation)

    outcome = engine.automation.execute(action, message, conversation)
    assert outcome.conversation.tags == {"lead"}
    again = engine.automation.execute(action, message, outcome.conversation)
    assert again.conversation.tags == {"lead"}

    executions = engine.automation.list_executions(rule.id)
    assert len(executions) == 2
    assert all(e.status == ExecutionStatus.SUCCESS for e in executions)
    stored_rule = engine.automation.get_rule(rule.id)
    assert stored_rule.execution_count == 2
    assert stored_rule.last_executed_at is not None


def test_transfer_agent_assigns_and_publishes(engine, add_rule, make_message):
    add_rule("humano", "keyword", "atendente", "transfer_agent", "maria")
    message, conversation = _ingested(engine, make_message, "quero um atendente")
    action = engine.automation.evaluate(message, conversation)

    outcome = engine.automation.execute(action, message, conversation)
    assert outcome.conversation.assigned_agent == "maria"
    assert engine.aggregate.get(conversation.id).assigned_agent == "maria"


def test_create_ticket_goes_to_sink(engine, add_rule, make_message, tickets):
    rule = add_rule("suporte", "keyword", "defeito", "create_ticket", "Produto com defeito")
    message, conversation = _ingested(engine, make_message, "chegou com defeito")
    action = engine.automation.evaluate(message, conversation)

    engine.automation.execute(action, message, conversation)
    assert len(tickets) == 1
    assert tickets[0].rule_id == rule.id
    assert tickets[0].subject == "Produto com defeito"
    assert tickets[0].body == "chegou com defeito"


def test_send_message_goes_through_channel(engine, add_rule, make_message, channel):
    add_rule("saudação", "keyword", "oi", "send_message", "Olá! Como posso ajudar?")
    message, conversation = _ingested(engine, make_message)
    action = engine.automation.evaluate(message, conversation)

    outcome = engine.automation.execute(action, message, conversation)
    assert channel.sent_to(PHONE) == ["Olá! Como posso ajudar?"]
    assert outcome.reply.direction == MessageDirection.OUTBOUND
    assert outcome.reply.metadata["automated"] is True


def test_failed_action_is_recorded_and_raised(engine, add_rule, make_message, channel):
    rule = add_rule("saudação", "keyword", "oi", "send_message", "Olá!")
    message, conversation = _ingested(engine, make_message)
    action = engine.automation.evaluate(message, conversation)
    channel.available = False

    with pytest.raises(GenerationFailed):
        engine.automation.execute(action, message, conversation)
    executions = engine.automation.list_executions(rule.id)
    assert executions[0].status == ExecutionStatus.FAILED
    assert executions[0].error_message


def test_rule_management_errors(engine):
    with pytest.raises(RuleNotFound):
        engine.automation.get_rule("missing")
    with pytest.raises(RuleNotFound):
        engine.automation.delete_rule("missing")
    with pytest.raises(RuleNotFound):
        engine.automation.list_executions("missing")


def test_engine_without_responder_cannot_send(store):
    engine = AutomationRuleEngine(store)
    rule = engine.upsert_rule(
        AutomationRuleCreate(
            name="x",
            trigger=RuleTrigger(type="keyword", value="oi"),
            action=RuleAction(type="send_message", value="Olá"),
        )
    )
    action = engine.evaluate(_message("oi"), _conversation())
    assert action.rule_id == rule.id
    with pytest.raises(ChatSyncError):
        engine.execute(action, _message("oi"), _conversation())
