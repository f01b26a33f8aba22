"""Shared fixtures for event-server HTTP tests."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agentwatch.event_server.app import app
from agentwatch.event_server.hub import BroadcastHub
from agentwatch.event_server.managers.ingest import IngestGateway
from agentwatch.event_server.managers.platforms import PlatformRegistry, seed_builtin_platforms
from agentwatch.event_server.settings import AgentWatchSettings
from agentwatch.event_server.store.sql import SqlEventStore

_STATE_FIELDS = ("settings", "db_session_factory", "event_store", "hub", "platform_registry", "gateway")


@pytest.fixture
async def registry(session_factory: async_sessionmaker[AsyncSession]) -> PlatformRegistry:
    """Registry seeded with the built-in platforms."""
    platform_registry = PlatformRegistry()
    async with session_factory() as db:
        await seed_builtin_platforms(db)
        await platform_registry.refresh(db)
    return platform_registry


@pytest.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    store: SqlEventStore,
    registry: PlatformRegistry,
    settings: AgentWatchSettings,
) -> AsyncIterator[AsyncClient]:
    """Async HTTP client wired to the app with a SQLite-backed store.

    The app lifespan does NOT run under ``ASGITransport``, so the state
    singletons are built here the same way the lifespan builds them.
    """
    hub = BroadcastHub(queue_size=settings.stream.queue_size)
    store.add_listener(hub.publish)

    app.state.settings = settings
    app.state.db_session_factory = session_factory
    app.state.event_store = store
    app.state.hub = hub
    app.state.platform_registry = registry
    app.state.gateway = IngestGateway(store, registry, settings)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    for name in _STATE_FIELDS:
        setattr(app.state, name, None)
