"""Engine and session lifecycle for the billing store."""

import os
import logging
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    create_async_engine as sa_create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine,
)
from sqlalchemy.pool import StaticPool

from . import models

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./billing_recon.db"

# Plain Postgres URLs are rewritten to the asyncpg driver
ASYNC_DRIVER_PREFIXES = {
    "postgresql://": "postgresql+asyncpg://",
    "postgres://": "postgresql+asyncpg://",
}

# Process-wide store used by the API; the CLI and tests build their own
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_database_url() -> str:
    """Resolve the billing store URL from DATABASE_URL.

    Returns:
        An async driver URL. Falls back to a local SQLite file.
    """
    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        return DEFAULT_DATABASE_URL
    for prefix, async_prefix in ASYNC_DRIVER_PREFIXES.items():
        if db_url.startswith(prefix):
            return async_prefix + db_url[len(prefix):]
    return db_url


def create_async_engine(
    database_url: Optional[str] = None,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
) -> AsyncEngine:
    """Build an engine for the billing store.

    SQLite engines share one connection so an in-memory store survives
    across sessions and the comparator's worker threads.

    Args:
        database_url: Store URL. Defaults to get_database_url().
        echo: Log emitted SQL.
        pool_size: Pooled connections for server databases.
        max_overflow: Extra connections allowed above pool_size.
    """
    url = database_url or get_database_url()

    if url.startswith("sqlite"):
        return sa_create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return sa_create_async_engine(url, echo=echo, pool_size=pool_size, max_overflow=max_overflow)


def get_async_session_factory(
    engine: Optional[AsyncEngine] = None,
) -> async_sessionmaker[AsyncSession]:
    """Return a session factory for reconciliation runs and repositories.

    Sessions keep attributes after commit since repositories commit per write.

    Args:
        engine: Bind a new factory to this engine. Without one, the factory
            installed by init_db() is returned.

    Raises:
        RuntimeError: If no engine is given and init_db() has not run.
    """
    if engine is not None:
        return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    if _session_factory is None:
        raise RuntimeError("Billing store not initialized. Call init_db() first.")
    return _session_factory


async def create_tables(engine: AsyncEngine) -> None:
    """Create the billing and reconciliation tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)


async def init_db(
    database_url: Optional[str] = None,
    echo: bool = False,
    create_schema: bool = True,
) -> async_sessionmaker[AsyncSession]:
    """Open the process-wide billing store.

    Args:
        database_url: Store URL. Defaults to get_database_url().
        echo: Log emitted SQL.
        create_schema: Create missing tables. Deployments that run the
            Alembic migration can turn this off.

    Returns:
        The session factory the API and settings manager share.
    """
    global _engine, _session_factory

    _engine = create_async_engine(database_url, echo=echo)
    _session_factory = get_async_session_factory(_engine)
    if create_schema:
        await create_tables(_engine)

    logger.info(f"Billing store ready ({_engine.url.get_backend_name()})")
    return _session_factory


async def close_db() -> None:
    """Dispose the process-wide billing store, if open."""
    global _engine, _session_factory

    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("Billing store closed")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding one session per admin request.

    Repositories commit their own writes; anything left open is rolled
    back when the request fails.
    """
    async with get_async_session_factory()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
