"""Async SQLAlchemy engine, session factory and declarative base.

Workers call ``engine.dispose()`` after each ``asyncio.run`` so pooled
connections never outlive the event loop that opened them.
"""
from __future__ import annotations

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from rivalwatch.config import settings

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DB_ECHO,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for diffs, competitors and workflow state."""


async def create_tables(bind: AsyncEngine = engine) -> None:
    """Create any missing tables. Existing tables are left untouched."""
    import rivalwatch.models  # noqa: F401  registers every mapped class on Base

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
