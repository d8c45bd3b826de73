"""Application and access logging setup.

- Application records from every ``chatsync.*`` module go to ``chatsync.log``.
- HTTP access records go to ``access.log`` through the ``uvicorn.access``
  logger, one JSON line per request with a correlation id and scrubbed
  credentials (webhook bearer secrets and gateway API keys included).
- Both files rotate at midnight.

Environment variables: LOG_DIR, LOG_LEVEL, LOG_JSON, LOG_REQUEST_BODIES,
LOG_RETENTION_DAYS, LOG_ROTATE_UTC.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from logging.handlers import TimedRotatingFileHandler
from typing import Any, cast
from uuid import uuid4

from fastapi import FastAPI, Request, Response

APP_LOGGER_NAME = "chatsync"
ACCESS_LOGGER_NAME = "uvicorn.access"

# Paths polled by probes or held open by the dashboard.
QUIET_PATHS = frozenset({"/api/health", "/api/metrics", "/api/conversations/stream"})
WEBHOOK_PREFIX = "/api/webhooks/"

SENSITIVE_FIELDS = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "apikey",
        "api_key",
        "password",
        "token",
        "secret",
    }
)


@dataclass(frozen=True)
class LogSettings:
    directory: str = "logs"
    level: int = logging.INFO
    json_lines: bool = False
    request_bodies: bool = False
    retention_days: int = 7
    rotate_utc: bool = False

    @classmethod
    def from_env(cls) -> "LogSettings":
        def flag(name: str) -> bool:
            return os.getenv(name, "false").lower() == "true"

        return cls(
            directory=os.getenv("LOG_DIR", "logs"),
            level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
            json_lines=flag("LOG_JSON"),
            request_bodies=flag("LOG_REQUEST_BODIES"),
            retention_days=int(os.getenv("LOG_RETENTION_DAYS", "7")),
            rotate_utc=flag("LOG_ROTATE_UTC"),
        )


class JsonFormatter(logging.Formatter):
    """One JSON object per record, used when LOG_JSON=true."""

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - simple
        payload = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def _formatter(settings: LogSettings) -> logging.Formatter:
    if settings.json_lines:
        return JsonFormatter()
    return logging.Formatter("[%(asctime)s] %(levelname)s in %(name)s: %(message)s")


def _scrub(data: object) -> object:
    """Mask sensitive keys in nested dictionaries and lists."""

    if isinstance(data, dict):
        return {
            key: "***" if str(key).lower() in SENSITIVE_FIELDS else _scrub(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [_scrub(item) for item in data]
    return data


def _file_handler(settings: LogSettings, filename: str) -> TimedRotatingFileHandler:
    handler = TimedRotatingFileHandler(
        os.path.join(settings.directory, filename),
        when="midnight",
        backupCount=settings.retention_days,
        utc=settings.rotate_utc,
    )
    handler.setFormatter(_formatter(settings))
    return handler


async def _buffer_body(request: Request) -> object | None:
    """Read the body once and replay it to the route handler."""

    body = await request.body()

    async def receive() -> dict:  # pragma: no cover - internal
        return {"type": "http.request", "body": body, "more_body": False}

    request._receive = receive  # type: ignore[attr-defined]
    if not body:
        return None
    try:
        return _scrub(json.loads(body))
    except ValueError:
        return body.decode("utf-8", errors="replace")


def _access_record(
    request: Request, response: Response, request_id: str, started: float
) -> dict[str, Any]:
    client_ip = request.headers.get("X-Forwarded-For")
    if not client_ip and request.client is not None:
        client_ip = request.client.host
    path = request.url.path
    record: dict[str, Any] = {
        "request_id": request_id,
        "method": request.method,
        "path": path,
        "status": response.status_code,
        "latency_ms": round((time.perf_counter() - started) * 1000, 2),
        "client_ip": client_ip,
        "headers": _scrub(dict(request.headers)),
    }
    if path.startswith(WEBHOOK_PREFIX):
        record["channel"] = path[len(WEBHOOK_PREFIX):].split("/", 1)[0]
    return record


def _install_access_logging(app: FastAPI, settings: LogSettings | None = None) -> None:
    """Emit one access record per request, skipping ``QUIET_PATHS``."""

    settings = settings or LogSettings.from_env()
    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        if request.url.path in QUIET_PATHS:
            return await call_next(request)

        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()
        body = await _buffer_body(request) if settings.request_bodies else None

        response = await call_next(request)

        record = _access_record(request, response, request_id, started)
        if body is not None:
            record["body"] = body
        response.headers["X-Request-Id"] = request_id
        access_logger.info(json.dumps(record, default=str))
        return response


def init_logging(app: FastAPI | None = None) -> None:
    """Attach rotating file handlers and, given ``app``, the access middleware."""

    settings = LogSettings.from_env()
    os.makedirs(settings.directory, exist_ok=True)

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    if not app_logger.handlers:
        app_logger.addHandler(_file_handler(settings, "chatsync.log"))
    app_logger.setLevel(settings.level)

    # uvicorn installs its own console handler; access records go to the file only.
    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)
    access_logger.handlers.clear()
    access_logger.addHandler(_file_handler(settings, "access.log"))
    access_logger.setLevel(settings.level)

    if app is not None:
        cast(Any, app).logger = app_logger
        _install_access_logging(app, settings)
