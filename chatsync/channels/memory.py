"""Sandbox channel that keeps everything in memory.

Useful for tests and local development without a WhatsApp gateway. Its
webhook format is deliberately small::

    {"phone": "+5511999999999", "name": "Ana",
     "messages": [{"id": "m1", "body": "oi", "timestamp": 10}],
     "receipts": [{"id": "m1", "status": "read"}]}
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any
from uuid import uuid4

from ..conversations.models import (
    InboundEvent,
    MessageRecord,
    ProviderMessage,
    StatusReceipt,
    from_epoch,
    normalize_phone,
    utcnow,
)
from ..conversations.schemas import MessageDirection, MessageStatus
from ..errors import ChannelUnavailable
from .base import ChannelEvent, ChannelPort


class InMemoryChannel(ChannelPort):
    channel_name = "sandbox"

    def __init__(self, *, clock: Callable[[], datetime] = utcnow) -> None:
        super().__init__()
        self._clock = clock
        self._lock = threading.Lock()
        self.available = True
        self.sent: list[tuple[str, ProviderMessage]] = []
        self.history: dict[str, list[ProviderMessage]] = {}

    def send(self, target: str, text: str) -> MessageRecord:
        if not self.available:
            raise ChannelUnavailable("sandbox channel is offline")
        phone = normalize_phone(target)
        record = ProviderMessage(
            provider_message_id=f"sandbox-{uuid4().hex}",
            direction=MessageDirection.OUTBOUND,
            body=text,
            timestamp=self._clock(),
            status=MessageStatus.SENT,
        )
        with self._lock:
            self.sent.append((phone, record))
            self.history.setdefault(phone, []).append(record)
        return record

    def fetch_recent(self, target: str, limit: int = 50) -> list[ProviderMessage]:
        if not self.available:
            raise ChannelUnavailable("sandbox channel is offline")
        with self._lock:
            return list(self.history.get(normalize_phone(target), []))[-limit:]

    def receive(self, target: str, *messages: ProviderMessage, contact_name: str | None = None) -> InboundEvent:
        """Record messages as if the provider delivered them and emit the event."""

        phone = normalize_phone(target)
        with self._lock:
            self.history.setdefault(phone, []).extend(messages)
        event = InboundEvent(target=phone, messages=list(messages), contact_name=contact_name)
        self.emit(event)
        return event

    def sent_to(self, target: str) -> list[str]:
        phone = normalize_phone(target)
        with self._lock:
            return [record.body for to, record in self.sent if to == phone]

    def parse_webhook(
        self, payload: Mapping[str, Any], headers: Mapping[str, str]
    ) -> list[ChannelEvent]:
        events: list[ChannelEvent] = []
        phone = payload.get("phone")
        messages = payload.get("messages") or []
        if phone and messages:
            events.append(
                InboundEvent(
                    target=normalize_phone(str(phone)),
                    messages=[self._parse_message(item) for item in messages],
                    contact_name=payload.get("name"),
                )
            )
        for receipt in payload.get("receipts") or []:
            events.append(
                StatusReceipt(
                    provider_message_id=str(receipt["id"]),
                    status=MessageStatus(receipt["status"]),
                    target=normalize_phone(str(phone)) if phone else None,
                )
            )
        return events

    def _parse_message(self, item: Mapping[str, Any]) -> ProviderMessage:
        return ProviderMessage(
            provider_message_id=item.get("id"),
            direction=item.get("direction", MessageDirection.INBOUND),
            body=str(item.get("body") or ""),
            type=item.get("type", "text"),
            status=item.get("status", MessageStatus.DELIVERED),
            timestamp=from_epoch(item.get("timestamp")) or self._clock(),
            sender_name=item.get("name"),
            metadata=dict(item.get("metadata") or {}),
        )
