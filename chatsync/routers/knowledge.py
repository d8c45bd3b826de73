"""Knowledge base API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ..container import ChatSyncEngine
from ..knowledge import schemas as kb_schemas
from .deps import get_engine, service_errors

router = APIRouter(tags=["knowledge"])


def _view(entry: kb_schemas.KnowledgeEntry) -> kb_schemas.KnowledgeEntryView:
    return kb_schemas.KnowledgeEntryView(**entry.model_dump(exclude={"embedding"}))


@router.get("/api/knowledge", response_model=kb_schemas.KnowledgeEntryList)
def list_entries(
    active_only: bool = False, engine: ChatSyncEngine = Depends(get_engine)
) -> kb_schemas.KnowledgeEntryList:
    items = [_view(e) for e in engine.knowledge.list_entries(active_only=active_only)]
    return kb_schemas.KnowledgeEntryList(items=items, total=len(items))


@router.post(
    "/api/knowledge",
    response_model=kb_schemas.KnowledgeEntryView,
    status_code=status.HTTP_201_CREATED,
)
def create_entry(
    payload: kb_schemas.KnowledgeEntryCreate, engine: ChatSyncEngine = Depends(get_engine)
) -> kb_schemas.KnowledgeEntryView:
    return _view(engine.knowledge.add_entry(payload))


@router.post("/api/knowledge/search", response_model=kb_schemas.KnowledgeSearchResponse)
def search_entries(
    payload: kb_schemas.KnowledgeSearchRequest, engine: ChatSyncEngine = Depends(get_engine)
) -> kb_schemas.KnowledgeSearchResponse:
    hits = engine.knowledge.retrieve(payload.query, payload.max_results, payload.min_similarity)
    return kb_schemas.KnowledgeSearchResponse(
        items=[
            kb_schemas.KnowledgeSearchHit(entry=_view(hit.entry), similarity=hit.similarity)
            for hit in hits
        ]
    )


@router.get("/api/knowledge/{entry_id}", response_model=kb_schemas.KnowledgeEntryView)
def get_entry(entry_id: str, engine: ChatSyncEngine = Depends(get_engine)) -> kb_schemas.KnowledgeEntryView:
    with service_errors():
        return _view(engine.knowledge.get_entry(entry_id))


@router.put("/api/knowledge/{entry_id}", response_model=kb_schemas.KnowledgeEntryView)
def update_entry(
    entry_id: str,
    payload: kb_schemas.KnowledgeEntryUpdate,
    engine: ChatSyncEngine = Depends(get_engine),
) -> kb_schemas.KnowledgeEntryView:
    with service_errors():
        return _view(engine.knowledge.update_entry(entry_id, payload))


@router.delete("/api/knowledge/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_entry(entry_id: str, engine: ChatSyncEngine = Depends(get_engine)) -> None:
    with service_errors():
        engine.knowledge.delete_entry(entry_id)
