"""Automation rules: evaluation, execution and management."""

from . import schemas
from .engine import AutomationAction, AutomationRuleEngine, TicketRequested, validate_rule

__all__ = [
    "AutomationAction",
    "AutomationRuleEngine",
    "TicketRequested",
    "schemas",
    "validate_rule",
]
