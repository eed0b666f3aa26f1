"""Async database engine and session management.

Provides:
    - build_engine / build_session_factory: construct an engine for any URL
      (PostgreSQL via asyncpg in production, SQLite via aiosqlite for dev/tests).
    - init_db / close_db: Lifecycle hooks for FastAPI's lifespan.

The Agreement Engine receives the session factory and opens one session per
unit of work; there is no request-scoped session.

Usage in tests:
    engine = build_engine("sqlite+aiosqlite:///" + str(tmp_path / "test.db"))
    await create_schema(engine)
    factory = build_session_factory(engine)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from milestone_settlement.infrastructure.database.orm_models import Base
from milestone_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from milestone_settlement.config import Settings

logger = get_logger(__name__)


def build_engine(
    database_url: str,
    *,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_timeout: int = 30,
    echo: bool = False,
) -> AsyncEngine:
    """Create an async engine. Pool sizing only applies to server databases."""
    kwargs: dict[str, Any] = {"echo": echo}
    if database_url.startswith("sqlite"):
        # Concurrent writers wait on SQLite's file lock instead of failing fast.
        kwargs["connect_args"] = {"timeout": 30}
    else:
        kwargs.update(
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_pre_ping=True,
        )
    return create_async_engine(database_url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def ping(engine: AsyncEngine) -> None:
    """Round-trip a trivial query; raises if the database is unreachable."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


async def init_db(settings: Settings) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Create the engine and session factory; create tables in development.

    Outside development the schema is expected to be provisioned ahead of time.
    """
    engine = build_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        echo=settings.db_echo_sql,
    )
    logger.info("database.engine_created", dialect=engine.dialect.name)

    if settings.is_development:
        await create_schema(engine)
        logger.info("database.tables_created")
    else:
        logger.info("database.skipping_create_all", reason="not in development mode")

    return engine, build_session_factory(engine)


async def close_db(engine: AsyncEngine) -> None:
    """Dispose of the database engine. Called during FastAPI's lifespan shutdown."""
    await engine.dispose()
    logger.info("database.engine_disposed")
