"""
Engine, session factory and the request-scoped session dependency.

PostgreSQL runs through the async psycopg driver; the test suite points
DATABASE_URL at SQLite (aiosqlite). Schema is created from the models by
``init_db``.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from inbound.config import settings


logger = logging.getLogger(__name__)


_PG_PREFIXES = ("postgresql+asyncpg://", "postgresql://", "postgres://")


def normalize_database_url(url: str) -> str:
    """Point plain PostgreSQL URLs at the async psycopg driver."""
    for prefix in _PG_PREFIXES:
        if url.startswith(prefix):
            return "postgresql+psycopg://" + url[len(prefix):]
    return url


is_sqlite = settings.DATABASE_URL.startswith("sqlite")
database_url = normalize_database_url(settings.DATABASE_URL)

if is_sqlite:
    # aiosqlite connections are bound to the loop that opened them, so no pooling
    engine = create_async_engine(
        database_url,
        echo=settings.DEBUG,
        poolclass=NullPool,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
else:
    engine = create_async_engine(
        database_url,
        echo=settings.DEBUG,
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        connect_args={"connect_timeout": 30},
    )

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session.

    Commits when the handler returns and rolls back on any exception, so a
    rejected action never leaves a partial write behind.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_db_session():
    """Same transaction handling for background jobs."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create missing tables and arm the ledger's append-only guard."""
    from inbound import models  # noqa: F401
    from inbound.core.immutability import register_immutability_listeners

    register_immutability_listeners()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Database ready ({len(Base.metadata.tables)} tables)")
