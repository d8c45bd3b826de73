"""Automation rule management API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ..automation import schemas as rule_schemas
from ..container import ChatSyncEngine
from .deps import get_engine, service_errors

router = APIRouter(tags=["automation"])


@router.get("/api/automation/rules", response_model=rule_schemas.AutomationRuleList)
def list_rules(
    active_only: bool = False, engine: ChatSyncEngine = Depends(get_engine)
) -> rule_schemas.AutomationRuleList:
    items = engine.automation.list_rules(active_only=active_only)
    return rule_schemas.AutomationRuleList(items=items, total=len(items))


@router.post(
    "/api/automation/rules",
    response_model=rule_schemas.AutomationRule,
    status_code=status.HTTP_201_CREATED,
)
def create_rule(
    payload: rule_schemas.AutomationRuleCreate, engine: ChatSyncEngine = Depends(get_engine)
) -> rule_schemas.AutomationRule:
    with service_errors():
        return engine.automation.upsert_rule(payload)


@router.get("/api/automation/rules/{rule_id}", response_model=rule_schemas.AutomationRule)
def get_rule(rule_id: str, engine: ChatSyncEngine = Depends(get_engine)) -> rule_schemas.AutomationRule:
    with service_errors():
        return engine.automation.get_rule(rule_id)


@router.put("/api/automation/rules/{rule_id}", response_model=rule_schemas.AutomationRule)
def update_rule(
    rule_id: str,
    payload: rule_schemas.AutomationRuleCreate,
    engine: ChatSyncEngine = Depends(get_engine),
) -> rule_schemas.AutomationRule:
    with service_errors():
        return engine.automation.upsert_rule(payload, rule_id=rule_id)


@router.delete("/api/automation/rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_rule(rule_id: str, engine: ChatSyncEngine = Depends(get_engine)) -> None:
    with service_errors():
        engine.automation.delete_rule(rule_id)


@router.get(
    "/api/automation/rules/{rule_id}/executions",
    response_model=rule_schemas.AutomationExecutionList,
)
def list_executions(
    rule_id: str, limit: int = 20, engine: ChatSyncEngine = Depends(get_engine)
) -> rule_schemas.AutomationExecutionList:
    with service_errors():
        items = engine.automation.list_executions(rule_id, limit=limit)
    return rule_schemas.AutomationExecutionList(items=items, total=len(items))
