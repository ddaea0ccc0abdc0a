"""Async PostgreSQL engine, session factory, and lifespan management.

SQLAlchemy 2.0 async over asyncpg. Matching passes, the verification
trigger and the audit subscriber open their own sessions from
`async_session_factory`; admin routes get one per request via `get_session`.
"""

from __future__ import annotations

import contextlib
import logging
import time
from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from organmatch.config import DatabaseSettings, settings

logger = logging.getLogger(__name__)


def build_engine(db: DatabaseSettings, *, echo: bool = False) -> AsyncEngine:
    """Pooled engine; stale connections are pinged before reuse and recycled hourly."""
    return create_async_engine(
        db.database_url,
        echo=echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


engine: AsyncEngine = build_engine(settings.db, echo=settings.log_level == "DEBUG")

# expire_on_commit=False: pass results and decided matches are read after commit
async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency — one session per request, committed on success."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def ping_db(target: AsyncEngine | None = None) -> float:
    """Round-trip `SELECT 1` and return the latency in milliseconds.

    Raises whatever the driver raises when the database is unreachable.
    """
    started = time.perf_counter()
    async with (target or engine).connect() as conn:
        await conn.execute(text("SELECT 1"))
    return (time.perf_counter() - started) * 1000


# ── Lifespan helpers ─────────────────────────────────────────────────


async def init_db() -> None:
    """Check connectivity, then create missing tables outside production.

    Production schemas come from Alembic only.
    """
    latency = await ping_db()
    logger.info("Database reachable (%.1f ms)", latency)
    if settings.is_production:
        return

    # Registers every model on Base.metadata
    from organmatch.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()


@contextlib.asynccontextmanager
async def db_lifespan() -> AsyncGenerator[None, None]:
    """Open the pool for the app's lifetime and dispose it on exit."""
    await init_db()
    try:
        yield
    finally:
        await close_db()
