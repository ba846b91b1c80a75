"""Database session configuration."""

from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from reaction_relay.core.settings import settings


class Base(DeclarativeBase):
    """Declarative base shared by all ORM models."""


def make_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an async engine, applying SQLite-specific connection options."""
    kwargs: dict[str, Any] = {"echo": echo}
    if url.startswith("sqlite"):
        # Concurrent wallets share one database file; wait on the write lock
        # instead of failing immediately.
        kwargs["connect_args"] = {"timeout": 30}
    else:
        kwargs["pool_pre_ping"] = True
    return create_async_engine(url, **kwargs)


def make_sessionmaker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Return a session factory bound to ``bind``."""
    return async_sessionmaker(bind, expire_on_commit=False, autoflush=False)


# Ensure model modules are imported so that metadata is populated when create_all runs.
import reaction_relay.models  # noqa: E402,F401

engine = make_engine(settings.effective_database_url, echo=settings.sql_debug)

SessionLocal = make_sessionmaker(engine)


async def create_tables(bind: AsyncEngine | None = None) -> None:
    """Create all database tables."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_tables(bind: AsyncEngine | None = None) -> None:
    """Drop all database tables."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
