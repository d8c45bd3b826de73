"""Pydantic schemas for contacts, conversations and messages."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"
    RESOLVED = "resolved"
    ARCHIVED = "archived"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    DOCUMENT = "document"


class MessageStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class Contact(BaseModel):
    id: str
    phone: str
    name: str
    tags: set[str] = Field(default_factory=set)
    is_online: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class Conversation(BaseModel):
    id: str
    contact_id: str
    status: ConversationStatus = ConversationStatus.ACTIVE
    priority: Priority = Priority.MEDIUM
    sentiment: Sentiment | None = None
    assigned_agent: str | None = None
    last_message_at: datetime | None = None
    tags: set[str] = Field(default_factory=set)
    created_at: datetime
    updated_at: datetime


class Message(BaseModel):
    id: str
    conversation_id: str
    provider_message_id: str | None = None
    dedup_key: str
    direction: MessageDirection
    body: str = ""
    type: MessageType = MessageType.TEXT
    status: MessageStatus = MessageStatus.SENT
    timestamp: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def sort_key(self) -> tuple[datetime, str]:
        return (self.timestamp, self.id)


class ConversationSummary(Conversation):
    contact: Contact | None = None


class ConversationDetail(ConversationSummary):
    messages: list[Message] = Field(default_factory=list)


class ConversationList(BaseModel):
    items: list[ConversationSummary]
    total: int


class MessageList(BaseModel):
    items: list[Message]
    total: int


class AssignRequest(BaseModel):
    agent: str = Field(min_length=1)


class SyncRequest(BaseModel):
    phone: str = Field(min_length=1)
    limit: int | None = Field(default=None, ge=1, le=500)


class SyncResponse(BaseModel):
    conversation: ConversationSummary | None = None
    processed_messages: int
    skipped_messages: int
    failures: list[str] = Field(default_factory=list)


class WebhookAck(BaseModel):
    accepted: int
    inbound_events: int
    status_receipts: int
