# =============================================================================
# FastAPI Application
# =============================================================================
#
# Builds the app and its process-wide collaborators.
#
# LIFESPAN:
#   startup  → engine + session factory → SqlSnapshotProvider
#            → LLM provider → Orchestrator, all stored on app.state
#   shutdown → engine disposed
#
# Run locally:
#   uvicorn app.main:app --reload
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.agents.orchestrator import Orchestrator
from app.api import accounts, advise
from app.config import Settings, settings
from app.db.engine import create_engine_from_settings, create_session_factory
from app.models.responses import HealthResponse
from app.services.llm import create_llm_provider
from app.services.snapshot import SqlSnapshotProvider

logger = logging.getLogger(__name__)


def configure_logging(config: Settings) -> None:
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    config: Settings = app.state.settings
    engine = create_engine_from_settings(config)
    snapshot_provider = SqlSnapshotProvider(create_session_factory(engine))
    llm = create_llm_provider(config)

    app.state.snapshot_provider = snapshot_provider
    app.state.orchestrator = Orchestrator(snapshot_provider, llm, config)
    logger.info("%s %s started", config.app_name, config.app_version)
    try:
        yield
    finally:
        await engine.dispose()
        logger.info("Database engine disposed")


def create_app(config: Settings | None = None) -> FastAPI:
    """Application factory. Tests build apps without the lifespan."""
    config = config or settings
    configure_logging(config)

    app = FastAPI(
        title=config.app_name,
        version=config.app_version,
        lifespan=lifespan,
    )
    app.state.settings = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(advise.router)
    app.include_router(accounts.router)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health() -> HealthResponse:
        return HealthResponse(version=config.app_version, service=config.app_name)

    return app


app = create_app()
