"""
DocVault Database Layer

Async SQLAlchemy engine and session factory construction.

Design:
    - No module-level singletons: the application lifespan builds the
      engine once and stores it on ``app.state``; tests build their own.
    - create_engine: async engine from Settings (asyncpg driver).
    - create_session_factory: reusable async session maker bound to it.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from docvault.core.config import Settings

logger = logging.getLogger(__name__)


def create_engine(config: Settings) -> AsyncEngine:
    """Create the async SQLAlchemy engine for the configured database."""
    engine = create_async_engine(
        config.DATABASE_URL,
        echo=False,
        pool_size=config.DATABASE_POOL_SIZE,
        pool_pre_ping=True,
    )
    logger.info(
        "Database engine created: %s@%s:%d/%s",
        config.POSTGRES_USER,
        config.POSTGRES_HOST,
        config.POSTGRES_PORT,
        config.POSTGRES_DB,
    )
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Return an async session maker that keeps objects usable after commit."""
    return async_sessionmaker(engine, expire_on_commit=False)
