"""Server-Sent Events helpers for the conversation delta stream.

Event format produced:
- "event: snapshot" once, with the conversations currently in the read model
- "event: delta" for each change published to the read model
- ": keepalive" comments while idle so proxies keep the connection open
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator

from .conversations.aggregate import ConversationAggregate
from .conversations.models import ConversationDelta


def format_sse(event: str, data: Any) -> str:
    payload = data if isinstance(data, str) else json.dumps(data, default=str)
    lines = "\n".join(f"data: {line}" for line in payload.splitlines() or [""])
    return f"event: {event}\n{lines}\n\n"


def delta_payload(delta: ConversationDelta) -> dict[str, Any]:
    return {
        "conversation": delta.conversation.model_dump(mode="json"),
        "contact": delta.contact.model_dump(mode="json") if delta.contact else None,
        "added_messages": [m.model_dump(mode="json") for m in delta.added_messages],
        "updated_messages": [m.model_dump(mode="json") for m in delta.updated_messages],
        "removed": delta.removed,
    }


async def delta_stream(
    aggregate: ConversationAggregate,
    *,
    keepalive_seconds: float = 15.0,
    max_events: int | None = None,
) -> AsyncIterator[str]:
    """Yield the current snapshot, then every delta as it is applied.

    Deltas are published on worker threads; they are handed to the event loop
    through ``call_soon_threadsafe``.
    """

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[ConversationDelta] = asyncio.Queue()
    unsubscribe = aggregate.subscribe(
        lambda delta: loop.call_soon_threadsafe(queue.put_nowait, delta)
    )
    sent = 0
    try:
        snapshot = [c.model_dump(mode="json") for c in aggregate.snapshot()]
        yield format_sse("snapshot", {"conversations": snapshot})
        while max_events is None or sent < max_events:
            try:
                delta = await asyncio.wait_for(queue.get(), timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield format_sse("delta", delta_payload(delta))
            sent += 1
    finally:
        unsubscribe()
