"""Sentence embeddings for knowledge entries and incoming questions."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Sequence
from typing import Protocol

from fastembed import TextEmbedding

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "sentence-transformers/paraphrase-multilingual-MiniLM-L12-v2"


class Embedder(Protocol):
    def embed(self, texts: Sequence[str]) -> Iterable[Sequence[float]]: ...


class LazyTextEmbedding:
    """Defer loading the fastembed model until the first embedding request.

    Model downloads are slow; creating the engine (and the test client) should
    not pay for them.
    """

    def __init__(self, model_name: str = DEFAULT_EMBEDDING_MODEL) -> None:
        self.model_name = model_name
        self._model: TextEmbedding | None = None
        self._lock = threading.Lock()

    def _load(self) -> TextEmbedding:
        with self._lock:
            if self._model is None:
                logger.info("Loading embedding model %s", self.model_name)
                self._model = TextEmbedding(model_name=self.model_name)
            return self._model

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        model = self._load()
        return [[float(x) for x in vector] for vector in model.embed(list(texts))]
