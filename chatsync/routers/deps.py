"""Shared dependencies for the API routers."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from concurrent.futures import TimeoutError as FutureTimeout
from contextlib import contextmanager

from fastapi import HTTPException, Request, status
from slowapi import Limiter

from ..container import ChatSyncEngine
from ..errors import (
    ChannelUnavailable,
    ContactInUse,
    ContactNotFound,
    ConversationNotFound,
    InvalidTransition,
    KnowledgeEntryNotFound,
    RuleEvaluationError,
    RuleNotFound,
)

logger = logging.getLogger(__name__)

_NOT_FOUND = (ConversationNotFound, ContactNotFound, RuleNotFound, KnowledgeEntryNotFound)
_CONFLICT = (InvalidTransition, ContactInUse)


def get_client_ip(request: Request) -> str:
    """Extract a best-effort client IP for rate limiting.

    Prefer ``X-Forwarded-For`` (first hop) if present, otherwise use the
    socket peer address. This function is used by SlowAPI to key the limiter.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


limiter = Limiter(key_func=get_client_ip)


def webhook_rate_limit() -> str:
    return os.getenv("WEBHOOK_RATE_LIMIT", "120/minute")


def get_engine(request: Request) -> ChatSyncEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="engine not started")
    return engine


@contextmanager
def service_errors() -> Iterator[None]:
    """Translate engine errors raised inside the block into HTTP errors."""

    try:
        yield
    except _NOT_FOUND as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except _CONFLICT as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except (RuleEvaluationError, ValueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc
    except ChannelUnavailable as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc
    except FutureTimeout as exc:
        # The queued work keeps running; only the wait is abandoned.
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail="conversation queue is busy, the request is still queued",
        ) from exc
