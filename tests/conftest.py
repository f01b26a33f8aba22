"""Shared test fixtures.

Unit tests run against a throwaway SQLite database (aiosqlite) created per
test from the ORM metadata.  Integration tests use real PostgreSQL and
Redis containers managed by testcontainers-python; containers are
session-scoped (started once per test run).

Tests needing containers require Docker and should be marked with
``@pytest.mark.integration``.
"""

from __future__ import annotations

import os
from collections.abc import AsyncIterator, Callable, Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest
import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from testcontainers.postgres import PostgresContainer
from testcontainers.redis import RedisContainer

from agentwatch.event_server.db.engine import create_engine, create_schema, create_session_factory
from agentwatch.event_server.settings import AgentWatchSettings, _get_settings_cached
from agentwatch.event_server.store.sql import SqlEventStore


def _set_env(key: str, value: str) -> None:
    """Set an env var and invalidate the settings cache."""
    os.environ[key] = value
    _get_settings_cached.cache_clear()


# ---------------------------------------------------------------------------
# Event factory
# ---------------------------------------------------------------------------


@pytest.fixture
def make_event() -> Callable[..., dict[str, Any]]:
    """Return a factory for raw (submitted) event dicts with sane defaults."""

    def _make(**overrides: Any) -> dict[str, Any]:
        event: dict[str, Any] = {
            "platform": "langchain",
            "source_app": "test-app",
            "session_id": "sess-1",
            "agent_id": "agent-1",
            "event_type": "tool.invoked",
            "timestamp": datetime.now(UTC).isoformat(),
            "payload": {"tool": "search"},
        }
        event.update(overrides)
        return event

    return _make


@pytest.fixture
def settings() -> AgentWatchSettings:
    """Settings for unit tests: defaults, no ``.env`` file, fast retries."""
    return AgentWatchSettings(_env_file=None, retry_backoff_ms=1, timeout_ms=2_000)


# ---------------------------------------------------------------------------
# Function-scoped: SQLite engine and event store
# ---------------------------------------------------------------------------


@pytest.fixture
async def sqlite_engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """Async engine on a fresh SQLite file with the schema created."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'events.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(sqlite_engine)


@pytest.fixture
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def store(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[SqlEventStore]:
    event_store = SqlEventStore(session_factory)
    yield event_store
    await event_store.close()


# ---------------------------------------------------------------------------
# Session-scoped: containers (started once, shared across all tests)
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def pg_container() -> Iterator[PostgresContainer]:
    """Start a PostgreSQL 17 container for the test session."""
    with PostgresContainer(
        image="postgres:17",
        username="test",
        password="test",
        dbname="agentwatch_test",
        driver="psycopg",
    ) as pg:
        yield pg


@pytest.fixture(scope="session")
def redis_container() -> Iterator[RedisContainer]:
    """Start a Redis 7 container for the test session."""
    with RedisContainer(image="redis:7") as r:
        yield r


@pytest.fixture(scope="session")
def pg_url(pg_container: PostgresContainer) -> str:
    """PostgreSQL URL (psycopg3 dialect) with Alembic migrations applied."""
    url = pg_container.get_connection_url()
    _set_env("AGENTWATCH_DATABASE_URL", url)

    # Apply all migrations using the packaged alembic.ini (same config as CLI).
    from alembic import command

    from agentwatch.cli import _alembic_config

    command.upgrade(_alembic_config(), "head")
    return url


@pytest.fixture(scope="session")
def redis_url(redis_container: RedisContainer) -> str:
    """Redis connection URL."""
    host = redis_container.get_container_host_ip()
    port = redis_container.get_exposed_port(6379)
    return f"redis://{host}:{port}/0"


# ---------------------------------------------------------------------------
# Function-scoped: PostgreSQL store and Redis client
# ---------------------------------------------------------------------------


@pytest.fixture
async def pg_engine(pg_url: str) -> AsyncIterator[AsyncEngine]:
    """Async engine on the migrated container database; tables emptied afterwards."""
    from sqlalchemy import text

    engine = create_engine(pg_url)
    yield engine
    async with engine.begin() as conn:
        await conn.execute(text("TRUNCATE events"))
    await engine.dispose()


@pytest.fixture
async def pg_store(pg_engine: AsyncEngine) -> AsyncIterator[SqlEventStore]:
    event_store = SqlEventStore(create_session_factory(pg_engine))
    yield event_store
    await event_store.close()


@pytest.fixture
async def redis_client(redis_url: str) -> AsyncIterator[aioredis.Redis]:
    """Async Redis client; database flushed after each test."""
    client = aioredis.from_url(redis_url)
    yield client
    await client.flushdb()
    await client.aclose()
