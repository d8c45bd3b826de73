"""Pydantic schemas for the knowledge base APIs."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class KnowledgeEntryBase(BaseModel):
    """Fields shared by create operations and stored entries."""

    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    category: str = "general"
    tags: list[str] = Field(default_factory=list)
    is_active: bool = True


class KnowledgeEntryCreate(KnowledgeEntryBase):
    pass


class KnowledgeEntryUpdate(BaseModel):
    """Patchable knowledge entry fields."""

    title: str | None = Field(default=None, min_length=1)
    content: str | None = Field(default=None, min_length=1)
    category: str | None = None
    tags: list[str] | None = None
    is_active: bool | None = None


class KnowledgeEntry(KnowledgeEntryBase):
    id: str
    embedding: list[float] | None = Field(default=None, repr=False)
    created_at: datetime
    updated_at: datetime

    @property
    def embedding_text(self) -> str:
        return f"{self.title}\n{self.content}"


class KnowledgeEntryView(KnowledgeEntryBase):
    """Entry as returned by the API, without the embedding vector."""

    id: str
    created_at: datetime
    updated_at: datetime


class KnowledgeEntryList(BaseModel):
    items: list[KnowledgeEntryView]
    total: int


class ScoredEntry(BaseModel):
    entry: KnowledgeEntry
    similarity: float


class KnowledgeSearchRequest(BaseModel):
    query: str = Field(min_length=1)
    max_results: int = Field(default=3, ge=1, le=50)
    min_similarity: float = Field(default=0.7, ge=0.0, le=1.0)


class KnowledgeSearchHit(BaseModel):
    entry: KnowledgeEntryView
    similarity: float


class KnowledgeSearchResponse(BaseModel):
    items: list[KnowledgeSearchHit]
