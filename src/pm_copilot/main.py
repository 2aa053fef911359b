"""FastAPI application factory.

Creates the app with logging middleware, CORS, lifespan wiring of the
meeting store, generative gateway, artifact orchestrator and chat session
registry, and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.pm_copilot.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.pm_copilot.api.v1.router import router as v1_router
from src.pm_copilot.artifacts.context import ContextAssembler
from src.pm_copilot.artifacts.orchestrator import ArtifactOrchestrator
from src.pm_copilot.artifacts.session import ConversationSessions
from src.pm_copilot.config import get_settings
from src.pm_copilot.core.blob_store import RedisBlobStore, create_blob_store
from src.pm_copilot.meetings.store import MeetingStore
from src.pm_copilot.observability.tracer import init_langfuse
from src.pm_copilot.services.llm import GenerativeGateway


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: load the meeting store and build services."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    # Langfuse tracing (instruments LiteLLM callbacks)
    try:
        init_langfuse(settings)
    except Exception:
        log.warning("startup.langfuse_init_failed", exc_info=True)

    blob_store = create_blob_store(settings)
    meeting_store = MeetingStore(blob_store, key=settings.STORE_KEY)
    count = await meeting_store.load()

    gateway = GenerativeGateway(settings)
    orchestrator = ArtifactOrchestrator(
        gateway,
        meeting_store,
        assembler=ContextAssembler(settings),
        settings=settings,
    )

    app.state.meeting_store = meeting_store
    app.state.gateway = gateway
    app.state.orchestrator = orchestrator
    app.state.conversation_sessions = ConversationSessions(settings.MAX_CHAT_SESSIONS)

    log.info(
        "startup.complete",
        store_backend=settings.STORE_BACKEND.value,
        meetings=count,
        gateway_available=gateway.available,
    )

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    if isinstance(blob_store, RedisBlobStore):
        try:
            await blob_store.close()
        except Exception:
            log.warning("shutdown.redis_close_failed", exc_info=True)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="PM Copilot API",
        version="0.1.0",
        description="Turns meeting notes and recordings into summaries, PRDs, roadmaps and stakeholder emails",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    app.include_router(v1_router)

    return app


# Module-level app for uvicorn
app = create_app()
