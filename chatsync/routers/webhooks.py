"""Webhook ingestion routes for the messaging channel."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from ..container import ChatSyncEngine
from ..conversations import schemas as convo_schemas
from ..conversations.models import InboundEvent, StatusReceipt
from .deps import get_engine, limiter, webhook_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post("/api/webhooks/{channel}", response_model=convo_schemas.WebhookAck)
@limiter.limit(webhook_rate_limit)
async def ingest_webhook(
    channel: str,
    request: Request,
    engine: ChatSyncEngine = Depends(get_engine),
) -> JSONResponse:
    """Accept a provider webhook and queue its events per conversation.

    Inbound events are emitted to the channel's subscribers (the engine
    queues them on the dispatcher); the response only says how many events
    were accepted.
    """

    body_bytes = await request.body()
    try:
        payload = json.loads(body_bytes.decode("utf-8")) if body_bytes else {}
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid JSON payload: {exc}") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Webhook payload must be a JSON object")

    adapter = engine.channel
    if channel.lower() != adapter.channel_name:
        raise HTTPException(status_code=404, detail=f"Channel '{channel}' is not configured")
    if not adapter.verify_signature(body_bytes, request.headers):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    inbound = receipts = 0
    for event in adapter.parse_webhook(payload, request.headers):
        if isinstance(event, InboundEvent):
            adapter.emit(event)
            inbound += 1
        elif isinstance(event, StatusReceipt):
            engine.submit_receipt(event)
            receipts += 1
    if inbound or receipts:
        logger.info("Queued %d inbound event(s) and %d receipt(s)", inbound, receipts)

    ack = convo_schemas.WebhookAck(
        accepted=inbound + receipts, inbound_events=inbound, status_receipts=receipts
    )
    return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=ack.model_dump())
