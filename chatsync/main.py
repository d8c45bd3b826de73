"""FastAPI application wiring for chatsync.

This module bootstraps the HTTP API:

- Configures logging, CORS (optional for the admin UI), Prometheus metrics
  and rate limiting.
- Builds the engine (store, channel, automation, knowledge, replies) from
  environment variables on start-up and hydrates the conversation read model.
- Mounts the webhook, conversation, automation and knowledge routers.
"""

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .config import EngineSettings
from .container import ChatSyncEngine, build_engine
from .routers import automation, conversations, knowledge, webhooks
from .routers.deps import limiter

load_dotenv()

logger = logging.getLogger(__name__)


def create_app(engine: ChatSyncEngine | None = None) -> FastAPI:
    """Create the API; ``engine`` is built from the environment when omitted."""

    settings = engine.settings if engine is not None else EngineSettings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "engine", None) is None:
            app.state.engine = build_engine(settings)
        current: ChatSyncEngine = app.state.engine
        current.aggregate.load(current.store)
        logger.info(
            "chatsync %s started (channel=%s, auto_reply=%s)",
            __version__,
            current.channel.channel_name,
            current.settings.auto_reply_enabled,
        )
        try:
            yield
        finally:
            current.close()

    app = FastAPI(title="chatsync", version=__version__, lifespan=lifespan)
    app.state.engine = engine
    init_logging(app)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)
    # Optional CORS for admin UI
    if settings.admin_ui_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.admin_ui_origins),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    app.include_router(webhooks.router)
    app.include_router(conversations.router)
    app.include_router(automation.router)
    app.include_router(knowledge.router)

    @app.get("/api/health")
    async def health():
        """Liveness/readiness probe with a minimal JSON body."""
        return {"status": "ok"}

    @app.get("/api/version")
    async def version():
        """Return version information for the application."""
        return {
            "version": __version__,
            "build_date": __build_date__,
            "commit_sha": __commit_sha__,
        }

    # Expose Prometheus metrics
    Instrumentator().instrument(app).expose(
        app, include_in_schema=False, endpoint="/api/metrics"
    )
    return app


app = create_app()
