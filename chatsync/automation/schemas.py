"""Pydantic schemas for automation rules and their execution records."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class TriggerType(str, Enum):
    KEYWORD = "keyword"
    TIME = "time"
    SENTIMENT = "sentiment"
    FIRST_MESSAGE = "first_message"


class ActionType(str, Enum):
    SEND_MESSAGE = "send_message"
    TRANSFER_AGENT = "transfer_agent"
    ADD_TAG = "add_tag"
    CREATE_TICKET = "create_ticket"


class ExecutionStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class RuleTrigger(BaseModel):
    # Stored as plain strings so a malformed rule can still be loaded and skipped.
    type: str
    value: str = ""


class RuleAction(BaseModel):
    type: str
    value: str = ""


class AutomationRuleBase(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    trigger: RuleTrigger
    action: RuleAction
    is_active: bool = True


class AutomationRuleCreate(AutomationRuleBase):
    pass


class AutomationRule(AutomationRuleBase):
    id: str
    ordinal: int | None = None
    execution_count: int = 0
    last_executed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class AutomationRuleList(BaseModel):
    items: list[AutomationRule]
    total: int


class AutomationExecutionCreate(BaseModel):
    rule_id: str
    conversation_id: str
    message_id: str | None = None
    action_type: str
    status: ExecutionStatus
    error_message: str | None = None
    execution_time_ms: int = 0


class AutomationExecution(AutomationExecutionCreate):
    id: str
    executed_at: datetime


class AutomationExecutionList(BaseModel):
    items: list[AutomationExecution]
    total: int
