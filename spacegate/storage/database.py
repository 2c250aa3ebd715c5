"""Async database engine, session factory and store-error translation."""

from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from functools import lru_cache

import structlog
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from spacegate.config.settings import get_settings
from spacegate.exceptions import StoreUnavailable

logger = structlog.get_logger(__name__)


@lru_cache
def get_engine() -> AsyncEngine:
    """Return a cached async database engine (singleton per process)."""
    settings = get_settings()
    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    engine = get_engine()
    async with AsyncSession(engine) as session:
        yield session


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create all tables (for dev/testing only; use Alembic in production)."""
    import spacegate.models.database  # noqa: F401  (registers tables)

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


@asynccontextmanager
async def store_errors(operation: str) -> AsyncIterator[None]:
    """Re-raise connectivity failures as StoreUnavailable. No retries here."""
    try:
        yield
    except (OperationalError, InterfaceError, TimeoutError, ConnectionError) as exc:
        logger.error("store_unavailable", operation=operation, error=str(exc))
        msg = f"Store unavailable during {operation}"
        raise StoreUnavailable(msg) from exc
