"""
Database Configuration and Session Management
============================================

Async engine, session factory and table creation for the payment service.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
)

from config import Config
from models import Base

logger = logging.getLogger(__name__)

async_engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[async_sessionmaker] = None


def to_async_url(url: str) -> str:
    """Point a plain Postgres URL at the asyncpg driver"""
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        # asyncpg uses 'ssl' instead of 'sslmode'
        url = url.replace("sslmode=", "ssl=")
    return url


def init_engine(url: Optional[str] = None, **engine_kwargs) -> AsyncEngine:
    """Create the async engine and session factory used by async_managed_session"""
    global async_engine, AsyncSessionLocal

    url = url or Config.DATABASE_URL
    if not url:
        raise ValueError("DATABASE_URL environment variable is required")

    async_url = to_async_url(url)
    if async_url.startswith("postgresql+asyncpg://"):
        engine_kwargs.setdefault("pool_size", 5)
        engine_kwargs.setdefault("max_overflow", 10)
        engine_kwargs.setdefault("pool_pre_ping", True)
        engine_kwargs.setdefault("pool_recycle", 3600)

    async_engine = create_async_engine(
        async_url, echo=Config.DATABASE_ECHO, **engine_kwargs
    )
    AsyncSessionLocal = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )
    logger.info(f"✅ Database engine initialized ({async_engine.dialect.name})")
    return async_engine


def get_session_factory() -> async_sessionmaker:
    if AsyncSessionLocal is None:
        init_engine()
    return AsyncSessionLocal


@asynccontextmanager
async def async_managed_session():
    """Async context manager for database sessions"""
    session = get_session_factory()()
    try:
        yield session
        await session.commit()
    except Exception as e:
        logger.error(f"Database session error: {e}")
        await session.rollback()
        raise
    finally:
        await session.close()


async def create_tables() -> None:
    """Create all database tables if they don't exist"""
    if async_engine is None:
        init_engine()
    logger.info(f"🏗️ Creating database tables ({len(Base.metadata.tables)} models)...")
    async with async_engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    logger.info("✅ Database schema verified")


async def test_connection() -> bool:
    """Test database connection"""
    try:
        if async_engine is None:
            init_engine()
        async with async_engine.connect() as connection:
            await connection.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"❌ Database connection test failed: {e}")
        return False


async def dispose_engine() -> None:
    global async_engine, AsyncSessionLocal
    if async_engine is not None:
        await async_engine.dispose()
    async_engine = None
    AsyncSessionLocal = None
