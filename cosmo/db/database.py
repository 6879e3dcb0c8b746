"""
Engine and session factory for the COSMO registries and audit tables.

``COSMO_DATABASE_URL`` selects the backend; without it a local SQLite file
is used.  There is no migration tooling: ``init_db`` runs ``create_all``,
which only adds missing tables.
"""
from __future__ import annotations

import logging
from typing import Any, AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from cosmo.config import settings

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./cosmo.db"


class Base(DeclarativeBase):
    pass


# Set by init_db, cleared by close_db
_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_database_url() -> str:
    url = settings.database_url
    if not url:
        logger.warning(f"COSMO_DATABASE_URL not set, using {DEFAULT_DATABASE_URL}")
        return DEFAULT_DATABASE_URL
    return url


def display_database_url(url: str) -> str:
    """The URL with any password masked, for logs."""
    return make_url(url).render_as_string(hide_password=True)


def _engine_options(url: str) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": settings.debug}
    if url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
    else:
        # Long-lived pools against managed Postgres drop idle connections.
        options["pool_pre_ping"] = True
    return options


async def init_db(create_schema: bool = True) -> None:
    global _engine, _async_session_factory

    database_url = get_database_url()
    logger.info(f"Initializing database: {display_database_url(database_url)}")

    _engine = create_async_engine(database_url, **_engine_options(database_url))
    _async_session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    from cosmo.db import models  # noqa: F401  register tables with Base

    if create_schema:
        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Schema ready: {len(Base.metadata.tables)} tables")


async def close_db() -> None:
    global _engine, _async_session_factory

    if _engine:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
        logger.info("Database connection closed")


def _session_factory() -> async_sessionmaker[AsyncSession]:
    if _async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _async_session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session: commit on success, roll back on error."""
    async with _session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def AsyncSessionLocal() -> AsyncSession:
    """Unmanaged session for the CLI; the caller commits."""
    return _session_factory()()
