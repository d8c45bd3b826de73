"""Transport-level records exchanged between the channel, the synchronizer
and the read model."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .schemas import (
    Contact,
    Conversation,
    Message,
    MessageDirection,
    MessageStatus,
    MessageType,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def from_epoch(value: Any) -> datetime | None:
    """Convert provider epoch values (seconds or milliseconds) to datetimes."""

    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number > 1e11:
        number /= 1000.0
    return datetime.fromtimestamp(number, tz=timezone.utc)


_JID_SUFFIX = re.compile(r"[@:].*$")


def normalize_phone(value: str) -> str:
    """Return the canonical ``+<digits>`` form of a phone or WhatsApp JID."""

    raw = _JID_SUFFIX.sub("", (value or "").strip())
    digits = "".join(ch for ch in raw if ch.isdigit())
    if not digits:
        raise ValueError(f"not a phone number: {value!r}")
    return f"+{digits}"


@dataclass
class ProviderMessage:
    """A message as reported by the channel, before it is deduplicated."""

    direction: MessageDirection
    body: str
    timestamp: datetime
    provider_message_id: str | None = None
    type: MessageType = MessageType.TEXT
    status: MessageStatus = MessageStatus.SENT
    sender_name: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.direction = MessageDirection(self.direction)
        self.type = MessageType(self.type)
        self.status = MessageStatus(self.status)
        self.timestamp = ensure_aware(self.timestamp)


# What ``ChannelPort.send`` hands back for the message it just delivered.
MessageRecord = ProviderMessage


@dataclass
class InboundEvent:
    """New messages for one channel address, translated from a webhook."""

    target: str
    messages: list[ProviderMessage]
    contact_name: str | None = None


@dataclass
class StatusReceipt:
    """Delivery receipt for a previously sent or received message."""

    provider_message_id: str
    status: MessageStatus
    target: str | None = None


@dataclass
class ConversationDelta:
    """Change notification published to the read model."""

    conversation: Conversation
    contact: Contact | None = None
    added_messages: list[Message] = field(default_factory=list)
    updated_messages: list[Message] = field(default_factory=list)
    removed: bool = False


@dataclass
class IngestFailure:
    message: ProviderMessage
    reason: str


@dataclass
class IngestResult:
    target: str
    conversation: Conversation | None = None
    contact: Contact | None = None
    messages: list[Message] = field(default_factory=list)
    skipped: int = 0
    failures: list[IngestFailure] = field(default_factory=list)
    previous_last_message_at: datetime | None = None
    # An inbound message was already recorded before this batch.
    had_inbound_before: bool = False

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def inbound(self) -> list[Message]:
        return [m for m in self.messages if m.direction == MessageDirection.INBOUND]
