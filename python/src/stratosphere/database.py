"""
Database connection and session management.

The access layer uses the relational store purely as:
1. A key-value table with TTL (gsc_cache_logs)
2. An atomic counter table (api_quota_tracking)
3. A simple record table (client_gsc_tokens)

Stores receive an ``async_sessionmaker`` and open one short-lived session per
operation, so concurrent fetches for different tenants never share a session.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from .core.config import settings

logger = logging.getLogger(__name__)


def _engine_kwargs(database_url: str) -> Dict[str, Any]:
    """Pool settings per backend (SQLite manages its own pool)."""
    if database_url.startswith("sqlite"):
        return {}

    return {
        "pool_pre_ping": True,   # Verify connections before using
        "pool_size": 20,         # Connections per API instance
        "max_overflow": 10,      # Burst capacity for dashboard fan-out
        "pool_recycle": 3600,    # Recycle after 1 hour
        "pool_timeout": 30,      # Wait 30s for connection from pool
    }


def create_engine_for(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the given URL."""
    return create_async_engine(
        database_url,
        echo=echo,
        future=True,
        **_engine_kwargs(database_url),
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory used by the cache, quota and token stores."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = create_engine_for(settings.DATABASE_URL)
async_session_maker = create_session_factory(engine)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Application session factory shared by the access-layer stores."""
    return async_session_maker


async def init_db(target: Optional[AsyncEngine] = None) -> None:
    """
    Initialize database tables.

    NOTE: In production, use Alembic migrations instead.
    This is only for development/testing.
    """
    # Register table metadata
    from . import models  # noqa: F401

    async with (target or engine).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    logger.info("Database tables created successfully")


async def close_db() -> None:
    """Close database connections on shutdown."""
    logger.info("Closing database connections...")
    await engine.dispose()
    logger.info("Database connections closed successfully")


def upsert_statement(session: AsyncSession, table):
    """
    Dialect-specific INSERT construct supporting ON CONFLICT.

    PostgreSQL and SQLite both expose ``on_conflict_do_update`` with an
    ``excluded`` namespace.
    """
    if session.get_bind().dialect.name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    else:
        from sqlalchemy.dialects.sqlite import insert
    return insert(table)
