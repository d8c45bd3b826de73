"""Wire the engine components together."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .automation.engine import AutomationRuleEngine, TicketSink
from .channels import ChannelPort, build_channel
from .config import EngineSettings
from .conversations.aggregate import ConversationAggregate
from .conversations.dispatcher import ConversationDispatcher
from .conversations.models import InboundEvent, StatusReceipt
from .conversations.service import ConversationService
from .conversations.synchronizer import MessageSynchronizer
from .generation.completer import Completer, build_completer
from .generation.prompts import PromptBuilder
from .generation.providers import ProviderRegistry
from .generation.responder import ResponseGenerator
from .generation.responses import ResponseParameterStore
from .knowledge.embeddings import Embedder, LazyTextEmbedding
from .knowledge.index import KnowledgeIndex
from .nlp import NlpPipeline
from .storage.memory import InMemoryConversationStore

logger = logging.getLogger(__name__)


@dataclass
class ChatSyncEngine:
    settings: EngineSettings
    store: object
    channel: ChannelPort
    aggregate: ConversationAggregate
    synchronizer: MessageSynchronizer
    knowledge: KnowledgeIndex
    responder: ResponseGenerator
    automation: AutomationRuleEngine
    service: ConversationService
    dispatcher: ConversationDispatcher

    def submit_event(self, event: InboundEvent):
        """Queue an inbound event behind earlier events of the same contact."""

        return self.dispatcher.submit(event.target, self.service.handle_event, event)

    def submit_receipt(self, receipt: StatusReceipt):
        key = receipt.target or f"receipt:{receipt.provider_message_id}"
        return self.dispatcher.submit(key, self.service.apply_receipt, receipt)

    def close(self) -> None:
        self.dispatcher.shutdown()
        close = getattr(self.store, "close", None)
        if close is not None:
            close()


def build_store(settings: EngineSettings):
    if settings.database_url:
        from .storage.postgres import PostgresConversationStore

        store = PostgresConversationStore(settings.database_url)
        store.ensure_schema()
        logger.info("Using PostgreSQL conversation store")
        return store
    logger.warning("DATABASE_URL not set; using the in-memory conversation store")
    return InMemoryConversationStore()


def build_engine(
    settings: EngineSettings | None = None,
    *,
    store=None,
    channel: ChannelPort | None = None,
    completer: Completer | None = None,
    embedder: Embedder | None = None,
    ticket_sink: TicketSink | None = None,
    registry: ProviderRegistry | None = None,
) -> ChatSyncEngine:
    """Create every component from ``settings``; explicit arguments win."""

    settings = settings or EngineSettings.from_env()
    store = store if store is not None else build_store(settings)
    channel = channel or build_channel(settings)
    registry = registry or ProviderRegistry()
    completer = completer or build_completer(settings, registry)
    embedder = embedder or LazyTextEmbedding(settings.embedding_model)

    aggregate = ConversationAggregate()
    synchronizer = MessageSynchronizer(
        store, aggregate, channel=channel, fetch_limit=settings.fetch_recent_limit
    )
    knowledge = KnowledgeIndex(store, embedder)
    options = ResponseParameterStore().options_for(
        getattr(completer, "provider", "openai"),
        timeout=settings.completion_timeout_seconds,
    )
    responder = ResponseGenerator(
        store,
        channel,
        synchronizer,
        knowledge,
        completer,
        prompts=PromptBuilder(),
        options=options,
        max_results=settings.rag_max_results,
        min_similarity=settings.rag_min_similarity,
    )
    automation = AutomationRuleEngine(
        store, responder=responder, aggregate=aggregate, ticket_sink=ticket_sink
    )
    service = ConversationService(
        store,
        synchronizer,
        automation,
        responder,
        aggregate,
        nlp_pipeline=NlpPipeline(),
        auto_reply=settings.auto_reply_enabled,
    )
    engine = ChatSyncEngine(
        settings=settings,
        store=store,
        channel=channel,
        aggregate=aggregate,
        synchronizer=synchronizer,
        knowledge=knowledge,
        responder=responder,
        automation=automation,
        service=service,
        dispatcher=ConversationDispatcher(max_workers=settings.worker_pool_size),
    )
    channel.on_inbound_event(engine.submit_event)
    return engine
