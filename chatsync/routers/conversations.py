"""Conversation management API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from ..container import ChatSyncEngine
from ..conversations import schemas as convo_schemas
from ..conversations.models import normalize_phone
from ..sse_utils import delta_stream
from .deps import get_engine, service_errors

router = APIRouter(tags=["conversations"])

SYNC_TIMEOUT_SECONDS = 60.0


@router.get("/api/conversations", response_model=convo_schemas.ConversationList)
def list_conversations(
    limit: int = 50,
    status: convo_schemas.ConversationStatus | None = None,
    engine: ChatSyncEngine = Depends(get_engine),
) -> convo_schemas.ConversationList:
    return engine.service.list_conversations(limit=limit, status=status)


@router.get("/api/conversations/stream")
async def stream_conversations(engine: ChatSyncEngine = Depends(get_engine)) -> StreamingResponse:
    return StreamingResponse(
        delta_stream(engine.aggregate),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/api/conversations/sync", response_model=convo_schemas.SyncResponse)
def sync_conversation(
    payload: convo_schemas.SyncRequest,
    engine: ChatSyncEngine = Depends(get_engine),
) -> convo_schemas.SyncResponse:
    """Pull recent history for a phone from the channel (catch-up)."""

    with service_errors():
        phone = normalize_phone(payload.phone)
        future = engine.dispatcher.submit(phone, engine.service.sync_recent, phone, payload.limit)
        result = future.result(timeout=SYNC_TIMEOUT_SECONDS)
    summary = None
    if result.conversation is not None:
        summary = convo_schemas.ConversationSummary(
            **result.conversation.model_dump(), contact=result.contact
        )
    return convo_schemas.SyncResponse(
        conversation=summary,
        processed_messages=len(result.messages),
        skipped_messages=result.skipped,
        failures=[failure.reason for failure in result.failures],
    )


@router.get(
    "/api/conversations/{conversation_id}",
    response_model=convo_schemas.ConversationDetail,
)
def get_conversation(
    conversation_id: str, engine: ChatSyncEngine = Depends(get_engine)
) -> convo_schemas.ConversationDetail:
    with service_errors():
        return engine.service.get_conversation(conversation_id)


@router.get(
    "/api/conversations/{conversation_id}/messages",
    response_model=convo_schemas.MessageList,
)
def list_messages(
    conversation_id: str,
    limit: int | None = None,
    engine: ChatSyncEngine = Depends(get_engine),
) -> convo_schemas.MessageList:
    with service_errors():
        return engine.service.list_messages(conversation_id, limit=limit)


@router.post(
    "/api/conversations/{conversation_id}/pending",
    response_model=convo_schemas.Conversation,
)
def mark_pending(
    conversation_id: str, engine: ChatSyncEngine = Depends(get_engine)
) -> convo_schemas.Conversation:
    with service_errors():
        return engine.service.mark_pending(conversation_id)


@router.post(
    "/api/conversations/{conversation_id}/resolve",
    response_model=convo_schemas.Conversation,
)
def resolve_conversation(
    conversation_id: str, engine: ChatSyncEngine = Depends(get_engine)
) -> convo_schemas.Conversation:
    with service_errors():
        return engine.service.resolve(conversation_id)


@router.post(
    "/api/conversations/{conversation_id}/archive",
    response_model=convo_schemas.Conversation,
)
def archive_conversation(
    conversation_id: str, engine: ChatSyncEngine = Depends(get_engine)
) -> convo_schemas.Conversation:
    with service_errors():
        return engine.service.archive(conversation_id)


@router.post(
    "/api/conversations/{conversation_id}/activate",
    response_model=convo_schemas.Conversation,
)
def activate_conversation(
    conversation_id: str, engine: ChatSyncEngine = Depends(get_engine)
) -> convo_schemas.Conversation:
    with service_errors():
        return engine.service.activate(conversation_id)


@router.post(
    "/api/conversations/{conversation_id}/assign",
    response_model=convo_schemas.Conversation,
)
def assign_conversation(
    conversation_id: str,
    payload: convo_schemas.AssignRequest,
    engine: ChatSyncEngine = Depends(get_engine),
) -> convo_schemas.Conversation:
    with service_errors():
        return engine.service.assign_agent(conversation_id, payload.agent)


@router.delete("/api/conversations/{conversation_id}", status_code=204)
def purge_conversation(conversation_id: str, engine: ChatSyncEngine = Depends(get_engine)) -> None:
    with service_errors():
        engine.service.purge_conversation(conversation_id)
