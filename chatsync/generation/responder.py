"""Compose, send and record automated replies."""

from __future__ import annotations

import logging
from typing import Any

from ..conversations.schemas import Conversation, Message
from ..conversations.synchronizer import MessageSynchronizer
from ..errors import ConversationNotFound, GenerationFailed, PersistenceFailure
from ..knowledge.index import KnowledgeIndex
from .completer import Completer
from .prompts import PromptBuilder
from .responses import CompletionOptions

logger = logging.getLogger(__name__)


class ResponseGenerator:
    """Knowledge-grounded replies sent through the channel.

    Nothing is sent when retrieval or completion fails. Delivered replies are
    recorded through the synchronizer so they deduplicate against the
    provider's own echo of the outbound message.
    """

    def __init__(
        self,
        store,
        channel,
        synchronizer: MessageSynchronizer,
        knowledge: KnowledgeIndex,
        completer: Completer,
        *,
        prompts: PromptBuilder | None = None,
        options: CompletionOptions | None = None,
        max_results: int = 3,
        min_similarity: float = 0.7,
    ) -> None:
        self._store = store
        self._channel = channel
        self._synchronizer = synchronizer
        self._knowledge = knowledge
        self._completer = completer
        self._prompts = prompts or PromptBuilder()
        self._options = options or CompletionOptions()
        self._max_results = max_results
        self._min_similarity = min_similarity

    def respond(self, conversation: Conversation, user_message: str) -> Message:
        try:
            sources = self._knowledge.retrieve(
                user_message, self._max_results, self._min_similarity
            )
        except Exception as exc:
            logger.warning("Knowledge retrieval failed for %s: %s", conversation.id, exc)
            raise GenerationFailed(f"knowledge retrieval failed: {exc}") from exc

        prompt = self._prompts.build(user_message, sources)
        try:
            answer = self._completer.complete(prompt, self._options)
        except Exception as exc:
            logger.warning("Completion failed for %s: %s", conversation.id, exc)
            raise GenerationFailed(f"completion failed: {exc}") from exc
        answer = (answer or "").strip()
        if not answer:
            raise GenerationFailed("completion returned an empty answer")

        metadata = {
            "rag_response": True,
            "confidence": sources[0].similarity if sources else 0.0,
            "sources": [
                {"id": s.entry.id, "title": s.entry.title, "similarity": round(s.similarity, 4)}
                for s in sources
            ],
        }
        return self._deliver(conversation, answer, metadata)

    def send_text(
        self, conversation: Conversation, text: str, *, metadata: dict[str, Any] | None = None
    ) -> Message:
        """Send fixed ``text`` with the same recording and failure semantics."""

        if not text or not text.strip():
            raise GenerationFailed("refusing to send an empty message")
        return self._deliver(conversation, text, {"automated": True, **(metadata or {})})

    def _deliver(self, conversation: Conversation, text: str, metadata: dict[str, Any]) -> Message:
        contact = self._store.get_contact(conversation.contact_id)
        if contact is None:
            raise ConversationNotFound(f"no contact for conversation {conversation.id}")
        try:
            record = self._channel.send(contact.phone, text)
        except Exception as exc:
            logger.warning("Sending reply to %s failed: %s", contact.phone, exc)
            raise GenerationFailed(f"send failed: {exc}") from exc

        record.metadata = {**record.metadata, **metadata}
        result = self._synchronizer.ingest(contact.phone, [record])
        if result.messages:
            return result.messages[0]
        if result.skipped and record.provider_message_id:
            existing = self._store.get_message_by_provider_id(record.provider_message_id)
            if existing is not None:
                return existing
        reason = result.failures[0].reason if result.failures else "reply was not recorded"
        raise PersistenceFailure(reason)
