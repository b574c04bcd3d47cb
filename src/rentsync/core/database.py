"""Async SQLAlchemy engine and session factory.

Provides:
- Base: Declarative base for mapping and observability tables
- get_engine(): Lazily created engine singleton for the running service
- create_session_factory(): Async-generator session factory handed to repositories
- dialect_insert(): INSERT ... ON CONFLICT construct for PostgreSQL or SQLite
- init_db() / close_db(): Development schema creation and engine disposal

Repositories never touch the engine directly. They receive a session
factory at construction time, so tests can hand them an in-memory SQLite
factory instead.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.rentsync.config import get_settings

SessionFactory = Callable[[], AsyncGenerator[AsyncSession, None]]

# ── Module-level engine (lazy init) ────────────────────────────────────────

_engine: AsyncEngine | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton."""
    global _engine
    if _engine is None:
        settings = get_settings()
        kwargs: dict = {"echo": False}
        if settings.DATABASE_URL.startswith("postgresql"):
            kwargs.update(pool_size=20, max_overflow=10, pool_pre_ping=True)
        _engine = create_async_engine(settings.DATABASE_URL, **kwargs)
    return _engine


# ── Declarative Base ────────────────────────────────────────────────────────


class Base(DeclarativeBase):
    """Base class for all rentsync tables."""


# ── Session Factory ─────────────────────────────────────────────────────────


def create_session_factory(engine: AsyncEngine) -> SessionFactory:
    """Build a session factory bound to ``engine``.

    The returned callable is used as ``async for session in factory():``
    and closes the session when the loop body exits.
    """

    async def _session() -> AsyncGenerator[AsyncSession, None]:
        async with AsyncSession(engine, expire_on_commit=False) as session:
            yield session

    return _session


def dialect_insert(session: AsyncSession, model: type):
    """Return an INSERT construct supporting ON CONFLICT for the bound dialect."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"upsert not supported on dialect {dialect!r}")


# ── Database Initialization ─────────────────────────────────────────────────


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create all tables if they don't exist (development and tests)."""
    # Import models so they register on Base.metadata
    import src.rentsync.mapping.models  # noqa: F401
    import src.rentsync.observability.models  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine
    if _engine:
        await _engine.dispose()
        _engine = None
