"""Runtime settings for the engine, read from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return float(value)


def _env_list(name: str) -> tuple[str, ...]:
    value = os.getenv(name, "")
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class EngineSettings:
    database_url: str | None = None
    auto_reply_enabled: bool = True
    rag_max_results: int = 3
    rag_min_similarity: float = 0.7
    completion_timeout_seconds: float = 30.0
    channel_timeout_seconds: float = 15.0
    worker_pool_size: int = 8
    fetch_recent_limit: int = 50
    system_prompt: str | None = None
    openai_model: str = "gpt-4o-mini"
    embedding_model: str = "sentence-transformers/paraphrase-multilingual-MiniLM-L12-v2"
    evolution_api_url: str | None = None
    evolution_api_key: str | None = None
    evolution_instance: str | None = None
    evolution_webhook_secret: str | None = None
    admin_ui_origins: tuple[str, ...] = field(default_factory=tuple)
    webhook_rate_limit: str = "120/minute"

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """Build settings from the process environment (after ``load_dotenv``)."""

        defaults = cls()
        return cls(
            database_url=os.getenv("DATABASE_URL") or None,
            auto_reply_enabled=_env_bool("AUTO_REPLY_ENABLED", defaults.auto_reply_enabled),
            rag_max_results=_env_int("RAG_MAX_RESULTS", defaults.rag_max_results),
            rag_min_similarity=_env_float("RAG_MIN_SIMILARITY", defaults.rag_min_similarity),
            completion_timeout_seconds=_env_float(
                "COMPLETION_TIMEOUT_SECONDS", defaults.completion_timeout_seconds
            ),
            channel_timeout_seconds=_env_float(
                "CHANNEL_TIMEOUT_SECONDS", defaults.channel_timeout_seconds
            ),
            worker_pool_size=_env_int("WORKER_POOL_SIZE", defaults.worker_pool_size),
            fetch_recent_limit=_env_int("FETCH_RECENT_LIMIT", defaults.fetch_recent_limit),
            system_prompt=os.getenv("SYSTEM_PROMPT") or None,
            openai_model=os.getenv("OPENAI_MODEL", defaults.openai_model),
            embedding_model=os.getenv("EMBEDDING_MODEL", defaults.embedding_model),
            evolution_api_url=os.getenv("EVOLUTION_API_URL") or None,
            evolution_api_key=os.getenv("EVOLUTION_API_KEY") or None,
            evolution_instance=os.getenv("EVOLUTION_INSTANCE") or None,
            evolution_webhook_secret=os.getenv("EVOLUTION_WEBHOOK_SECRET") or None,
            admin_ui_origins=_env_list("ADMIN_UI_ORIGINS"),
            webhook_rate_limit=os.getenv("WEBHOOK_RATE_LIMIT", defaults.webhook_rate_limit),
        )

    @property
    def evolution_configured(self) -> bool:
        return bool(self.evolution_api_url and self.evolution_instance)


__all__ = ["EngineSettings"]
