# =============================================================================
# Database Engine & Session Factory
# =============================================================================
#
# Async SQLAlchemy over asyncpg. The engine and session factory are built
# once at process start (see app/main.py lifespan)
# and handed to the snapshot provider, so nothing here runs at import time.
#
# SESSION LIFECYCLE (snapshot reads):
# 1. SqlSnapshotProvider opens a session from the factory
# 2. Runs its five read queries
# 3. The `async with` block closes the session; reads never commit
# =============================================================================

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config import Settings


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """
    Build the async engine.

    - echo follows `debug`, so SQL is logged during development.
    - pool_size / max_overflow bound the connections a burst of concurrent
      snapshot reads can open.
    """
    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )


def create_session_factory(
    engine: AsyncEngine,
) -> async_sessionmaker[AsyncSession]:
    """
    Build the session factory bound to `engine`.

    expire_on_commit=False keeps loaded attributes readable after the
    session is closed, which the snapshot mapping relies on.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
