"""
Database Infrastructure
=======================

Manages database engines, session lifecycle and engine configuration.

Every tenant lives in its own database; this module keeps one async engine
per tenant code. Uses SQLAlchemy 2.0 with asyncpg in production and
aiosqlite in tests.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Dict, List, Optional

from sqlalchemy import DateTime, TypeDecorator
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from helpdesk_sla.config import settings
from helpdesk_sla.core import NotFoundError


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    SQLAlchemy 2.0 style using DeclarativeBase.
    """
    pass


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp stored as UTC.

    Backends without native timezone support (SQLite) hand back naive values;
    those are re-tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# Tenant code -> engine / session maker
_engines: Dict[str, AsyncEngine] = {}
_session_makers: Dict[str, async_sessionmaker[AsyncSession]] = {}


def _build_engine(database_url: str) -> AsyncEngine:
    # Fix asyncpg SSL: replace sslmode with ssl for asyncpg compatibility
    database_url = database_url.replace("sslmode=", "ssl=")

    if database_url.startswith("sqlite"):
        return create_async_engine(
            database_url,
            echo=settings.debug,
            connect_args={"timeout": settings.db_command_timeout_seconds},
        )

    return create_async_engine(
        database_url,
        echo=settings.debug,
        connect_args={"command_timeout": settings.db_command_timeout_seconds},
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout_seconds,
        pool_pre_ping=True,  # Verify connections before using
    )


def register_tenant(tenant_code: str, engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Register an engine for a tenant and return its session maker.

    Used by init_database() and by tests that bring their own engine.
    """
    _engines[tenant_code] = engine
    _session_makers[tenant_code] = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Prevent lazy loading after commit
        autoflush=False,
    )
    return _session_makers[tenant_code]


def init_database(tenant_urls: Optional[Dict[str, str]] = None) -> Dict[str, AsyncEngine]:
    """
    Initialize one engine and session maker per tenant.

    Should be called during application startup.

    Args:
        tenant_urls: Tenant code to database URL; defaults to settings.tenants
    """
    for tenant_code, url in (tenant_urls or settings.tenants).items():
        register_tenant(tenant_code, _build_engine(url))
    return dict(_engines)


def get_tenant_codes() -> List[str]:
    """Tenant codes with an initialized database."""
    return sorted(_session_makers)


def get_engine(tenant_code: str) -> AsyncEngine:
    """Engine for a tenant.

    Raises:
        NotFoundError: If the tenant is unknown
    """
    try:
        return _engines[tenant_code]
    except KeyError:
        raise NotFoundError("Tenant", tenant_code) from None


def get_session_maker(tenant_code: str) -> async_sessionmaker[AsyncSession]:
    """
    Session maker for a tenant.

    Raises:
        RuntimeError: If no database has been initialized at all
        NotFoundError: If the tenant is unknown
    """
    if not _session_makers:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    try:
        return _session_makers[tenant_code]
    except KeyError:
        raise NotFoundError("Tenant", tenant_code) from None


async def close_database() -> None:
    """
    Dispose of every tenant engine.

    Should be called during application shutdown.
    """
    for engine in _engines.values():
        await engine.dispose()
    _engines.clear()
    _session_makers.clear()


@asynccontextmanager
async def get_session_context(tenant_code: str) -> AsyncGenerator[AsyncSession, None]:
    """
    Async context manager for a tenant database session.

    For use in background tasks, scripts, and manual async operations.
    Commits on success, rolls back on error.

    Usage:
        async with get_session_context("acme") as session:
            result = await session.execute(select(TicketModel))
    """
    async with get_session_maker(tenant_code)() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_tables(engine: Optional[AsyncEngine] = None) -> None:
    """
    Create all database tables for one engine, or for every tenant.

    This should only be used for development/testing.
    """
    engines = [engine] if engine is not None else list(_engines.values())
    for target in engines:
        async with target.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
