"""Async SQLAlchemy engine and session factory.

PostgreSQL is reached through psycopg3 (``postgresql+psycopg://``), which
supports both sync (Alembic) and async with the same URL.  SQLite
(``sqlite+aiosqlite://``) is supported for local runs and tests.
"""

from __future__ import annotations

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from agentwatch.event_server.db.tables import Base


def create_engine(database_url: str, **kwargs: object) -> AsyncEngine:
    """Create an async SQLAlchemy engine with production-ready pool settings.

    Pool parameters only apply to server databases:

    - **pool_size=5**: baseline connections kept open.
    - **max_overflow=10**: burst capacity above pool_size.
    - **pool_pre_ping=True**: test connections before checkout to handle
      server-side disconnects (PG restarts, idle timeouts).
    - **pool_recycle=3600**: recycle connections after 1 hour to avoid
      issues with load-balancers or firewalls that drop idle TCP.

    All defaults can be overridden via *kwargs*.
    """
    defaults: dict[str, object] = {"echo": False}
    if not make_url(database_url).get_backend_name().startswith("sqlite"):
        defaults.update(
            {
                "pool_size": 5,
                "max_overflow": 10,
                "pool_pre_ping": True,
                "pool_recycle": 3600,
            }
        )
    defaults.update(kwargs)
    return create_async_engine(database_url, **defaults)  # type: ignore[arg-type]


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to *engine*.

    ``expire_on_commit=False`` so that ORM instances remain usable after
    commit without triggering lazy loads (important for async code where
    implicit IO is forbidden).
    """
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables directly from metadata (development and tests)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
