import asyncio
import json

from chatsync.conversations.aggregate import ConversationAggregate
from chatsync.conversations.models import ConversationDelta
from chatsync.conversations.schemas import Conversation
from chatsync.sse_utils import delta_payload, delta_stream, format_sse

from conftest import T0


def _conversation(cid):
    return Conversation(id=cid, contact_id="k1", last_message_at=T0, created_at=T0, updated_at=T0)


def _data(chunk):
    lines = [line[len("data: "):] for line in chunk.splitlines() if line.startswith("data: ")]
    return json.loads("\n".join(lines))


def test_format_sse_splits_multiline_payloads():
    assert format_sse("ping", "a\nb") == "event: ping\ndata: a\ndata: b\n\n"
    assert format_sse("delta", {"x": 1}) == 'event: delta\ndata: {"x": 1}\n\n'


def test_delta_payload_is_json_ready():
    payload = delta_payload(ConversationDelta(conversation=_conversation("a"), removed=True))
    assert payload["conversation"]["id"] == "a"
    assert payload["removed"] is True
    json.dumps(payload)


def test_stream_starts_with_snapshot_then_deltas():
    aggregate = ConversationAggregate()
    aggregate.apply(ConversationDelta(conversation=_conversation("existing")))

    async def collect():
        chunks = []
        stream = delta_stream(aggregate, keepalive_seconds=0.05, max_events=1)
        chunks.append(await stream.__anext__())
        aggregate.apply(ConversationDelta(conversation=_conversation("new")))
        async for chunk in stream:
            chunks.append(chunk)
        return chunks

    chunks = asyncio.run(collect())

    assert chunks[0].startswith("event: snapshot")
    assert [c["id"] for c in _data(chunks[0])["conversations"]] == ["existing"]
    deltas = [c for c in chunks if c.startswith("event: delta")]
    assert len(deltas) == 1
    assert _data(deltas[0])["conversation"]["id"] == "new"


def test_stream_sends_keepalive_and_unsubscribes():
    aggregate = ConversationAggregate()

    async def collect():
        stream = delta_stream(aggregate, keepalive_seconds=0.01)
        await stream.__anext__()
        keepalive = await stream.__anext__()
        await stream.aclose()
        return keepalive

    assert asyncio.run(collect()) == ": keepalive\n\n"
    aggregate.apply(ConversationDelta(conversation=_conversation("after")))
    assert aggregate._subscribers == []
