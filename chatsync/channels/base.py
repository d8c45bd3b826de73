"""Base abstraction for messaging channels."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from typing import Any, Union

from ..conversations.models import InboundEvent, MessageRecord, ProviderMessage, StatusReceipt

logger = logging.getLogger(__name__)

ChannelEvent = Union[InboundEvent, StatusReceipt]
InboundHandler = Callable[[InboundEvent], Any]


class ChannelPort(ABC):
    """Send, fetch and receive messages through an external provider."""

    #: Lowercase channel identifier used in routes and configuration.
    channel_name: str

    def __init__(self) -> None:
        self._handlers: list[InboundHandler] = []

    @abstractmethod
    def send(self, target: str, text: str) -> MessageRecord:
        """Deliver ``text`` to ``target`` and return the provider's record.

        Implementations raise :class:`~chatsync.errors.ChannelUnavailable`
        when the provider cannot be reached within their timeout.
        """

    @abstractmethod
    def fetch_recent(self, target: str, limit: int = 50) -> list[ProviderMessage]:
        """Return up to ``limit`` recent messages exchanged with ``target``."""

    def parse_webhook(
        self, payload: Mapping[str, Any], headers: Mapping[str, str]
    ) -> list[ChannelEvent]:
        """Convert a webhook payload into channel events.

        Payloads the adapter does not understand yield no events.
        """

        return []

    def verify_signature(self, body: bytes, headers: Mapping[str, str]) -> bool:
        """Validate authenticity of the webhook payload.

        Adapters can override this to implement signature checks. The default
        implementation returns ``True``.
        """

        return True

    # ------------------------------------------------------------------
    # Inbound event subscription

    def on_inbound_event(self, handler: InboundHandler) -> None:
        self._handlers.append(handler)

    def emit(self, event: InboundEvent) -> None:
        """Hand ``event`` to every registered handler."""

        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("Inbound handler failed on %s", self.channel_name)
