# box_tracker/database.py
"""
SQL database connection for the optional SQL record store.

Uses SQLAlchemy 2.0 async (asyncpg for PostgreSQL, aiosqlite for SQLite).
The engine is owned by the store instance, not by this module.
"""
from __future__ import annotations
from typing import AsyncGenerator, Tuple
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import text

# ============================================================================
# Base class for all ORM models
# ============================================================================

class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


# ============================================================================
# Engine and Session Factory
# ============================================================================

def normalize_database_url(url: str) -> str:
    """Map sync DSNs to their async drivers."""
    # sqlite:///x.db -> sqlite+aiosqlite:///x.db
    if url.startswith("sqlite:///"):
        return "sqlite+aiosqlite:///" + url[len("sqlite:///"):]
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def create_engine_and_factory(url: str, echo: bool = False) -> Tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Create async engine and session factory for ``url``."""
    url = normalize_database_url(url)
    kwargs = {"echo": echo}
    if make_url(url).get_backend_name().startswith("postgresql"):
        kwargs["pool_pre_ping"] = True  # Verify connections before use
    engine = create_async_engine(url, **kwargs)
    factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return engine, factory


@asynccontextmanager
async def session_scope(factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """
    Session with commit on success, rollback on exception.

    Usage:
        async with session_scope(factory) as db:
            result = await db.execute(...)
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ============================================================================
# Health Check
# ============================================================================

async def check_db_health(factory: async_sessionmaker[AsyncSession]) -> dict:
    """Check database connectivity and return status."""
    try:
        async with session_scope(factory) as db:
            result = await db.execute(text("SELECT 1"))
            result.scalar()
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        return {"status": "unhealthy", "database": "disconnected", "error": str(e)}
