"""
database.py — Async engine, session factory and transaction scopes.

Two ways to get a session:
  get_db()         FastAPI dependency, one session per request
  session_scope()  async context manager for background jobs and CLI runs

Both commit when the block finishes cleanly and roll back on any exception.
Tests swap in an aiosqlite engine by overriding get_db.
"""
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from bizmodel.config import settings


class Base(DeclarativeBase):
    """Shared metadata for bizmodel/models/. Lives here so alembic/env.py imports no routes."""


# JSONB on PostgreSQL, plain JSON on SQLite
JSONType = JSON().with_variant(JSONB(), "postgresql")


async_engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=5,
    max_overflow=10,
    pool_pre_ping=True,
)

# expire_on_commit=False: routes serialize ORM rows after the orchestrator's own commits
AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """
    Usage:
        async with session_scope() as db:
            await run_cleanup(db)
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with session_scope() as session:
        yield session
