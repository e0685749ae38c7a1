"""Async database engine, session factory and declarative base."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

from sqlalchemy import DateTime
from sqlalchemy.ext.asyncio import (
    AsyncAttrs,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func
from sqlalchemy.types import TypeDecorator

from dailyq.shared.clock import utcnow
from dailyq.shared.config import Settings, get_settings

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp that always round-trips as UTC.

    Backends without native timezone support hand back naive values;
    those are interpreted as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(AsyncAttrs, DeclarativeBase):
    """Declarative base adding audit timestamps to every table."""

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        doc="Timestamp when the row was created",
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        doc="Timestamp when the row was last modified",
    )


def build_engine(settings: Settings) -> AsyncEngine:
    """Create an engine with explicit timeouts for every store call."""
    kwargs = {"echo": settings.database_echo}
    if settings.database_url.startswith("postgresql+asyncpg"):
        kwargs["pool_timeout"] = settings.database_pool_timeout
        kwargs["pool_pre_ping"] = True
        kwargs["connect_args"] = {"command_timeout": settings.database_command_timeout}
    elif settings.database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"timeout": settings.database_command_timeout}
    return create_async_engine(settings.database_url, **kwargs)


async def init_database(settings: Settings | None = None) -> None:
    """Initialise the global engine and session factory."""
    global _engine, _session_maker

    if _engine is not None:
        return

    if settings is None:
        settings = get_settings()

    _engine = build_engine(settings)
    _session_maker = async_sessionmaker(_engine, expire_on_commit=False)
    logger.info("Database engine initialised")


async def create_tables() -> None:
    """Create all tables. Intended for local development and tests."""
    if _engine is None:
        await init_database()

    # Import models so they register on Base.metadata
    from dailyq.web import models  # noqa: F401

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_database() -> None:
    """Dispose of the global engine."""
    global _engine, _session_maker

    if _engine is not None:
        await _engine.dispose()
        logger.info("Database engine disposed")

    _engine = None
    _session_maker = None


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    if _session_maker is None:
        raise RuntimeError("Database not initialised; call init_database() first")
    return _session_maker


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session per request."""
    async with get_session_maker()() as session:
        yield session
