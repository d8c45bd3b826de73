import pytest

from chatsync.conversations import lifecycle
from chatsync.conversations.schemas import ConversationStatus
from chatsync.errors import ConversationNotFound, InvalidTransition

from conftest import PHONE

ACTIVE = ConversationStatus.ACTIVE
PENDING = ConversationStatus.PENDING
RESOLVED = ConversationStatus.RESOLVED
ARCHIVED = ConversationStatus.ARCHIVED


@pytest.mark.parametrize(
    "current,target",
    [
        (ACTIVE, PENDING),
        (ACTIVE, RESOLVED),
        (PENDING, ACTIVE),
        (PENDING, RESOLVED),
        (RESOLVED, ARCHIVED),
        (RESOLVED, ACTIVE),
        (ARCHIVED, ARCHIVED),
    ],
)
def test_allowed_transitions(current, target):
    assert lifecycle.ensure_transition(current, target) == target


@pytest.mark.parametrize(
    "current,target",
    [(ACTIVE, ARCHIVED), (PENDING, ARCHIVED), (ARCHIVED, ACTIVE), (ARCHIVED, RESOLVED)],
)
def test_rejected_transitions(current, target):
    with pytest.raises(InvalidTransition) as excinfo:
        lifecycle.ensure_transition(current, target)
    assert excinfo.value.current == current.value
    assert excinfo.value.target == target.value


def test_inbound_reopens_only_closed_states():
    assert lifecycle.status_after_inbound(RESOLVED) == ACTIVE
    assert lifecycle.status_after_inbound(ARCHIVED) == ACTIVE
    assert lifecycle.status_after_inbound(PENDING) == PENDING
    assert lifecycle.status_after_inbound("active") == ACTIVE


@pytest.fixture
def conversation(engine, make_message):
    engine.service.auto_reply = False
    result = engine.service.handle_inbound(PHONE, [make_message("oi", provider_id="m1")])
    return result.ingest.conversation


def test_service_walks_full_lifecycle(engine, conversation):
    service = engine.service
    assert service.mark_pending(conversation.id).status == PENDING
    assert service.resolve(conversation.id).status == RESOLVED
    assert service.archive(conversation.id).status == ARCHIVED
    assert engine.aggregate.get(conversation.id).status == ARCHIVED


def test_service_rejects_archiving_active(engine, conversation):
    with pytest.raises(InvalidTransition):
        engine.service.archive(conversation.id)
    assert engine.store.get_conversation(conversation.id).status == ACTIVE


def test_activate_from_resolved(engine, conversation):
    engine.service.resolve(conversation.id)
    assert engine.service.activate(conversation.id).status == ACTIVE


def test_repeated_request_is_a_no_op(engine, conversation):
    engine.service.resolve(conversation.id)
    assert engine.service.resolve(conversation.id).status == RESOLVED


def test_archived_conversation_reopens_on_inbound(engine, conversation, make_message):
    engine.service.resolve(conversation.id)
    engine.service.archive(conversation.id)

    engine.service.handle_inbound(PHONE, [make_message("voltei", minutes=30, provider_id="m2")])
    assert engine.store.get_conversation(conversation.id).status == ACTIVE


def test_unknown_conversation(engine):
    with pytest.raises(ConversationNotFound):
        engine.service.resolve("missing")
