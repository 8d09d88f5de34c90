"""
Session Store Engine

Async SQLAlchemy engine and session factory for the PostgreSQL store that
holds finished ingestion sessions, their knowledge graphs and crawled
documents. asyncpg opens no connection until the first session is used, so
importing this module is safe without a reachable database; unit tests hand
the persistence gateway a mocked factory instead.

Usage:
    from app.db.base import async_session_maker

    async with async_session_maker() as session:
        record = await session.scalar(
            select(IngestionRecord).where(IngestionRecord.session_id == session_id)
        )
"""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.config import settings, yaml_config

logger = logging.getLogger(__name__)

POOL_DEFAULTS: dict[str, Any] = {
    "pool_size": 5,
    "max_overflow": 10,
    "pool_timeout": 30,
    "pool_pre_ping": True,
}


def pool_options(database_config: dict[str, Any]) -> dict[str, Any]:
    """Engine pool keyword arguments from the `database` YAML section."""
    return {key: database_config.get(key, default) for key, default in POOL_DEFAULTS.items()}


engine = create_async_engine(
    settings.POSTGRES_URL,
    echo=settings.DEBUG,
    **pool_options(yaml_config.get("database", {})),
)

async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    """Declarative base for the session store tables."""


# Registers the tables on Base.metadata; must follow the Base definition
from app.db import models  # noqa: F401, E402


async def init_db() -> None:
    """
    Create missing session store tables.

    Called from the application lifespan. Existing tables are left as they
    are; schema changes go through the Alembic migrations.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Session store ready: {', '.join(sorted(Base.metadata.tables))}")


async def close_db() -> None:
    """Dispose of pooled connections on shutdown."""
    await engine.dispose()
