# src/Tasklets/db.py
from __future__ import annotations

import contextlib
import os
from collections.abc import AsyncIterator

import structlog
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from Tasklets.config import load_settings

log = structlog.get_logger()


def _normalize_url(url: str) -> str:
    # Upgrade to async drivers if user supplies sync URLs
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://") and not url.startswith("sqlite+aiosqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


class Base(DeclarativeBase):
    pass


_database_url: str | None = None
_engine: AsyncEngine | None = None
_sessionmaker: async_sessionmaker[AsyncSession] | None = None


def get_database_url() -> str:
    global _database_url
    if _database_url is None:
        _database_url = _normalize_url(load_settings().database_url)
    return _database_url


def _engine_kwargs(url: str) -> dict[str, object]:
    kwargs: dict[str, object] = {}
    if url.startswith("sqlite+aiosqlite://"):
        # SQLite ignores pool_size; keep it minimal and avoid pre_ping
        kwargs.update(connect_args={"timeout": 30})
        # In-memory DBs must share a single connection so the schema persists
        if ":memory:" in url or os.environ.get("TASKLETS_SQLITE_STATIC_POOL") == "1":
            kwargs.update(poolclass=StaticPool)
    elif url.startswith("postgresql+asyncpg://"):
        kwargs.update(
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
        )
    return kwargs


def get_engine() -> AsyncEngine:
    global _engine, _sessionmaker
    if _engine is None:
        url = get_database_url()
        _engine = create_async_engine(url, **_engine_kwargs(url))
        _sessionmaker = async_sessionmaker(_engine, expire_on_commit=False)
        parsed = make_url(url)
        backend = "postgres" if url.startswith("postgresql") else (
            "sqlite" if url.startswith("sqlite") else "other"
        )
        log.info(
            "db.connection.config",
            backend=backend,
            user=parsed.username or "",
            host=parsed.host or "",
            database=parsed.database or "",
            driver=parsed.drivername,
        )
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    if _sessionmaker is None:
        get_engine()
    return _sessionmaker  # type: ignore[return-value]


async def configure_engine(url: str) -> AsyncEngine:
    """Point the module at a new database, disposing any previous engine."""
    global _database_url
    await dispose_engine()
    _database_url = _normalize_url(url)
    return get_engine()


async def dispose_engine() -> None:
    global _engine, _sessionmaker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _sessionmaker = None


async def create_schema() -> None:
    """Create all tables on the current engine (dev/test databases)."""
    # Ensure models module is imported so all tables are registered
    from Tasklets import models as _models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@contextlib.asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    sm = get_sessionmaker()
    async with sm() as s:
        try:
            yield s
            await s.commit()
        except BaseException:
            log.error("db.session.error", exc_info=True)
            await s.rollback()
            raise
