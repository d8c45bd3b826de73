"""Conversation status transitions."""

from __future__ import annotations

from ..errors import InvalidTransition
from .schemas import ConversationStatus

ACTIVE = ConversationStatus.ACTIVE
PENDING = ConversationStatus.PENDING
RESOLVED = ConversationStatus.RESOLVED
ARCHIVED = ConversationStatus.ARCHIVED

# Transitions an operator may request explicitly. Archived conversations only
# come back through a new inbound message (see ``status_after_inbound``).
EXPLICIT_TRANSITIONS: dict[ConversationStatus, frozenset[ConversationStatus]] = {
    ACTIVE: frozenset({PENDING, RESOLVED}),
    PENDING: frozenset({ACTIVE, RESOLVED}),
    RESOLVED: frozenset({ARCHIVED, ACTIVE}),
    ARCHIVED: frozenset(),
}

REOPENABLE = frozenset({RESOLVED, ARCHIVED})


def can_transition(current: ConversationStatus, target: ConversationStatus) -> bool:
    current = ConversationStatus(current)
    target = ConversationStatus(target)
    return current == target or target in EXPLICIT_TRANSITIONS[current]


def ensure_transition(
    current: ConversationStatus, target: ConversationStatus
) -> ConversationStatus:
    """Return ``target`` or raise :class:`InvalidTransition`.

    Requesting the current status is accepted as a no-op so retried requests
    stay harmless.
    """

    if not can_transition(current, target):
        raise InvalidTransition(ConversationStatus(current).value, ConversationStatus(target).value)
    return ConversationStatus(target)


def status_after_inbound(current: ConversationStatus) -> ConversationStatus:
    """Status a conversation takes when a new inbound message arrives."""

    current = ConversationStatus(current)
    if current in REOPENABLE:
        return ACTIVE
    return current


__all__ = [
    "EXPLICIT_TRANSITIONS",
    "can_transition",
    "ensure_transition",
    "status_after_inbound",
]
