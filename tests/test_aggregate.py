from datetime import timedelta

from chatsync.conversations.aggregate import ConversationAggregate
from chatsync.conversations.models import ConversationDelta
from chatsync.conversations.schemas import Conversation, Message, MessageDirection, MessageStatus

from conftest import PHONE, T0


def _conversation(cid, minutes):
    return Conversation(
        id=cid,
        contact_id=f"k-{cid}",
        last_message_at=T0 + timedelta(minutes=minutes),
        created_at=T0,
        updated_at=T0,
    )


def _message(mid, cid, minutes, status=MessageStatus.SENT):
    return Message(
        id=mid,
        conversation_id=cid,
        dedup_key=f"p:{mid}",
        direction=MessageDirection.INBOUND,
        body=mid,
        status=status,
        timestamp=T0 + timedelta(minutes=minutes),
    )


def test_snapshot_orders_by_latest_activity():
    aggregate = ConversationAggregate()
    aggregate.apply(ConversationDelta(conversation=_conversation("a", 1)))
    aggregate.apply(ConversationDelta(conversation=_conversation("b", 5)))
    aggregate.apply(ConversationDelta(conversation=_conversation("a", 9)))

    assert [c.id for c in aggregate.snapshot()] == ["a", "b"]


def test_messages_merge_by_id_and_stay_ordered():
    aggregate = ConversationAggregate()
    conversation = _conversation("a", 2)
    aggregate.apply(
        ConversationDelta(
            conversation=conversation,
            added_messages=[_message("m2", "a", 2), _message("m1", "a", 1)],
        )
    )
    aggregate.apply(
        ConversationDelta(
            conversation=conversation,
            updated_messages=[_message("m1", "a", 1, status=MessageStatus.READ)],
        )
    )

    messages = aggregate.messages("a")
    assert [m.id for m in messages] == ["m1", "m2"]
    assert messages[0].status == MessageStatus.READ


def test_removed_delta_drops_conversation():
    aggregate = ConversationAggregate()
    conversation = _conversation("a", 1)
    aggregate.apply(ConversationDelta(conversation=conversation, added_messages=[_message("m1", "a", 1)]))
    aggregate.apply(ConversationDelta(conversation=conversation, removed=True))

    assert aggregate.get("a") is None
    assert aggregate.messages("a") == []


def test_subscribers_see_deltas_in_order_and_failures_are_isolated():
    aggregate = ConversationAggregate()
    seen = []

    def broken(delta):
        raise RuntimeError("subscriber bug")

    aggregate.subscribe(broken)
    unsubscribe = aggregate.subscribe(lambda delta: seen.append(delta.conversation.last_message_at))
    aggregate.apply(ConversationDelta(conversation=_conversation("a", 1)))
    aggregate.apply(ConversationDelta(conversation=_conversation("a", 2)))
    unsubscribe()
    aggregate.apply(ConversationDelta(conversation=_conversation("a", 3)))

    assert seen == [T0 + timedelta(minutes=1), T0 + timedelta(minutes=2)]
    assert aggregate.get("a").last_message_at == T0 + timedelta(minutes=3)


def test_load_hydrates_from_store(engine, make_message):
    engine.service.auto_reply = False
    engine.synchronizer.ingest(PHONE, [make_message("oi", provider_id="m1")])

    fresh = ConversationAggregate()
    assert fresh.load(engine.store) == 1
    (conversation,) = fresh.snapshot()
    assert fresh.contact(conversation.contact_id).phone == PHONE
    assert [m.body for m in fresh.messages(conversation.id)] == ["oi"]
