"""Evolution API (WhatsApp gateway) channel adapter."""

from __future__ import annotations

import hmac
import logging
from collections import OrderedDict
from collections.abc import Mapping
from typing import Any

import requests

from ..conversations.models import (
    InboundEvent,
    MessageRecord,
    ProviderMessage,
    StatusReceipt,
    from_epoch,
    normalize_phone,
    utcnow,
)
from ..conversations.schemas import MessageDirection, MessageStatus, MessageType
from ..errors import ChannelUnavailable
from .base import ChannelEvent, ChannelPort

logger = logging.getLogger(__name__)

# Baileys acknowledgement names and numeric codes reported by Evolution.
_STATUS_MAP = {
    "ERROR": MessageStatus.FAILED,
    "PENDING": MessageStatus.SENT,
    "SERVER_ACK": MessageStatus.SENT,
    "DELIVERY_ACK": MessageStatus.DELIVERED,
    "READ": MessageStatus.READ,
    "PLAYED": MessageStatus.READ,
    "0": MessageStatus.FAILED,
    "1": MessageStatus.SENT,
    "2": MessageStatus.SENT,
    "3": MessageStatus.DELIVERED,
    "4": MessageStatus.READ,
    "5": MessageStatus.READ,
    "SENT": MessageStatus.SENT,
    "DELIVERED": MessageStatus.DELIVERED,
    "FAILED": MessageStatus.FAILED,
}

_MEDIA_TYPES = (
    ("imageMessage", MessageType.IMAGE),
    ("videoMessage", MessageType.VIDEO),
    ("audioMessage", MessageType.AUDIO),
    ("documentMessage", MessageType.DOCUMENT),
)


def map_status(value: Any, default: MessageStatus | None = None) -> MessageStatus | None:
    if value is None:
        return default
    return _STATUS_MAP.get(str(value).upper(), default)


def _message_type(content: Mapping[str, Any]) -> MessageType:
    if content.get("conversation") or content.get("extendedTextMessage"):
        return MessageType.TEXT
    for key, message_type in _MEDIA_TYPES:
        if content.get(key):
            return message_type
    return MessageType.TEXT


def _message_body(content: Mapping[str, Any]) -> str:
    text = content.get("conversation") or (content.get("extendedTextMessage") or {}).get("text")
    if text:
        return str(text)
    for key, _ in _MEDIA_TYPES:
        caption = (content.get(key) or {}).get("caption")
        if caption:
            return str(caption)
    return ""


def _message_metadata(content: Mapping[str, Any]) -> dict[str, Any]:
    metadata: dict[str, Any] = {}
    for key, _ in _MEDIA_TYPES:
        media = content.get(key)
        if not media:
            continue
        if media.get("caption"):
            metadata["caption"] = media["caption"]
        if media.get("mimetype"):
            metadata["mime_type"] = media["mimetype"]
        if media.get("fileName"):
            metadata["file_name"] = media["fileName"]
    return metadata


def _is_direct_chat(jid: str) -> bool:
    return bool(jid) and not jid.endswith("@g.us") and not jid.startswith("status@")


class EvolutionChannel(ChannelPort):
    channel_name = "evolution"

    def __init__(
        self,
        *,
        base_url: str,
        instance: str,
        api_key: str | None = None,
        webhook_secret: str | None = None,
        timeout: float = 15.0,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__()
        self._base_url = base_url.rstrip("/")
        self._instance = instance
        self._api_key = api_key
        self._webhook_secret = webhook_secret
        self._timeout = timeout
        self._session = session or requests.Session()

    # ------------------------------------------------------------------
    # Outbound

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["apikey"] = self._api_key
        return headers

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self._base_url}{path}"
        try:
            response = self._session.request(
                method, url, headers=self._headers(), timeout=self._timeout, **kwargs
            )
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Evolution API %s %s failed: %s", method, path, exc)
            raise ChannelUnavailable(f"Evolution API request failed: {exc}") from exc

    def send(self, target: str, text: str) -> MessageRecord:
        number = normalize_phone(target).lstrip("+")
        data = self._request(
            "POST",
            f"/message/sendText/{self._instance}",
            json={"number": number, "text": text},
        ) or {}
        key = data.get("key") or {}
        return ProviderMessage(
            provider_message_id=key.get("id"),
            direction=MessageDirection.OUTBOUND,
            body=text,
            type=MessageType.TEXT,
            status=map_status(data.get("status"), MessageStatus.SENT),
            timestamp=from_epoch(data.get("messageTimestamp")) or utcnow(),
        )

    def fetch_recent(self, target: str, limit: int = 50) -> list[ProviderMessage]:
        number = normalize_phone(target).lstrip("+")
        data = self._request(
            "GET",
            f"/chat/fetchMessages/{self._instance}",
            params={"number": number, "limit": limit},
        )
        if isinstance(data, Mapping):
            records = data.get("messages") or []
            if isinstance(records, Mapping):
                records = records.get("records") or []
        else:
            records = data or []
        messages = []
        for record in records:
            message = self.map_message(record)
            if message is not None:
                messages.append(message)
        return messages

    # ------------------------------------------------------------------
    # Webhooks

    def verify_signature(self, body: bytes, headers: Mapping[str, str]) -> bool:
        if not self._webhook_secret:
            return True
        received = headers.get("authorization") or headers.get("Authorization") or ""
        return hmac.compare_digest(received, f"Bearer {self._webhook_secret}")

    def parse_webhook(
        self, payload: Mapping[str, Any], headers: Mapping[str, str]
    ) -> list[ChannelEvent]:
        event = str(payload.get("event") or "").upper().replace(".", "_")
        data = payload.get("data")
        if event == "MESSAGES_UPSERT":
            return list(self._parse_upsert(data))
        if event == "MESSAGES_UPDATE":
            return list(self._parse_update(data))
        logger.debug("Ignoring Evolution webhook event %r", event)
        return []

    def _parse_upsert(self, data: Any) -> list[InboundEvent]:
        if isinstance(data, Mapping) and "messages" in data:
            records = data.get("messages") or []
        elif isinstance(data, Mapping):
            records = [data]
        else:
            records = data or []

        grouped: OrderedDict[str, InboundEvent] = OrderedDict()
        for record in records:
            jid = str(((record or {}).get("key") or {}).get("remoteJid") or "")
            if not _is_direct_chat(jid):
                continue
            message = self.map_message(record)
            if message is None:
                continue
            target = normalize_phone(jid)
            event = grouped.setdefault(target, InboundEvent(target=target, messages=[]))
            event.messages.append(message)
            if message.direction == MessageDirection.INBOUND and message.sender_name:
                event.contact_name = message.sender_name
        return list(grouped.values())

    def _parse_update(self, data: Any) -> list[StatusReceipt]:
        records = data if isinstance(data, list) else [data]
        receipts = []
        for record in records:
            if not isinstance(record, Mapping):
                continue
            key = record.get("key") or {}
            message_id = record.get("keyId") or key.get("id")
            status = map_status(record.get("status") or (record.get("update") or {}).get("status"))
            if not message_id or status is None:
                continue
            jid = str(record.get("remoteJid") or key.get("remoteJid") or "")
            target = normalize_phone(jid) if _is_direct_chat(jid) else None
            receipts.append(StatusReceipt(provider_message_id=str(message_id), status=status, target=target))
        return receipts

    @staticmethod
    def map_message(record: Mapping[str, Any]) -> ProviderMessage | None:
        """Translate an Evolution/Baileys message record."""

        key = record.get("key") or {}
        content = record.get("message") or {}
        if not key.get("id") or not isinstance(content, Mapping):
            return None
        from_me = bool(key.get("fromMe"))
        direction = MessageDirection.OUTBOUND if from_me else MessageDirection.INBOUND
        default_status = MessageStatus.SENT if from_me else MessageStatus.DELIVERED
        return ProviderMessage(
            provider_message_id=str(key["id"]),
            direction=direction,
            body=_message_body(content),
            type=_message_type(content),
            status=map_status(record.get("status"), default_status),
            timestamp=from_epoch(record.get("messageTimestamp")) or utcnow(),
            sender_name=None if from_me else record.get("pushName"),
            metadata=_message_metadata(content),
        )
