"""Similarity search over the knowledge base."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime
from uuid import uuid4

import numpy as np

from ..conversations.models import utcnow
from ..errors import KnowledgeEntryNotFound
from .embeddings import Embedder
from .schemas import (
    KnowledgeEntry,
    KnowledgeEntryCreate,
    KnowledgeEntryUpdate,
    ScoredEntry,
)

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity clamped to ``[0, 1]``; zero vectors score ``0``."""

    left = np.asarray(a, dtype=np.float64)
    right = np.asarray(b, dtype=np.float64)
    if left.shape != right.shape:
        return 0.0
    denominator = float(np.linalg.norm(left) * np.linalg.norm(right))
    if denominator == 0.0:
        return 0.0
    value = float(np.dot(left, right) / denominator)
    return min(1.0, max(0.0, value))


class KnowledgeIndex:
    """Retrieve the active knowledge entries most similar to a query.

    Entries are scored in-process against their stored embeddings; entries
    stored without one are embedded on first use and written back.
    """

    def __init__(
        self,
        store,
        embedder: Embedder,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._clock = clock

    # ------------------------------------------------------------------
    # Retrieval

    def retrieve(
        self, query: str, max_results: int = 3, min_similarity: float = 0.7
    ) -> list[ScoredEntry]:
        if max_results <= 0 or not query or not query.strip():
            return []
        entries = self._store.list_knowledge_entries(active_only=True)
        if not entries:
            return []
        query_vector = self._embed_one(query)
        scored: list[ScoredEntry] = []
        for entry in entries:
            if entry.embedding is None:
                entry = self._backfill(entry)
            similarity = cosine_similarity(query_vector, entry.embedding)
            if similarity >= min_similarity:
                scored.append(ScoredEntry(entry=entry, similarity=similarity))
        scored.sort(key=lambda s: (-s.similarity, -s.entry.updated_at.timestamp()))
        logger.debug(
            "Knowledge retrieval matched %d of %d entries", len(scored), len(entries)
        )
        return scored[:max_results]

    # ------------------------------------------------------------------
    # Entry management

    def add_entry(self, payload: KnowledgeEntryCreate) -> KnowledgeEntry:
        now = self._clock()
        entry = KnowledgeEntry(id=uuid4().hex, created_at=now, updated_at=now, **payload.model_dump())
        entry.embedding = self._embed_one(entry.embedding_text)
        return self._store.create_knowledge_entry(entry)

    def update_entry(self, entry_id: str, payload: KnowledgeEntryUpdate) -> KnowledgeEntry:
        current = self.get_entry(entry_id)
        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        updated = current.model_copy(update={**changes, "updated_at": self._clock()})
        if updated.embedding is None or updated.embedding_text != current.embedding_text:
            updated.embedding = self._embed_one(updated.embedding_text)
        return self._store.update_knowledge_entry(updated)

    def delete_entry(self, entry_id: str) -> None:
        self._store.delete_knowledge_entry(entry_id)

    def get_entry(self, entry_id: str) -> KnowledgeEntry:
        entry = self._store.get_knowledge_entry(entry_id)
        if entry is None:
            raise KnowledgeEntryNotFound(entry_id)
        return entry

    def list_entries(self, active_only: bool = False) -> list[KnowledgeEntry]:
        return self._store.list_knowledge_entries(active_only=active_only)

    # ------------------------------------------------------------------
    # Helpers

    def _embed_one(self, text: str) -> list[float]:
        vectors = list(self._embedder.embed([text]))
        return [float(x) for x in vectors[0]]

    def _backfill(self, entry: KnowledgeEntry) -> KnowledgeEntry:
        entry = entry.model_copy(update={"embedding": self._embed_one(entry.embedding_text)})
        logger.info("Backfilled embedding for knowledge entry %s", entry.id)
        return self._store.update_knowledge_entry(entry)
