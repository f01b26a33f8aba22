"""FastAPI dependency injection for the DB session and process singletons.

Usage in route handlers::

    @router.post("/events")
    async def submit(gateway: Gateway, body: dict) -> SubmitResponse:
        ...

    @router.get("/platforms")
    async def platforms(db: DbSession) -> list[PlatformResponse]:
        ...

Dependencies raise HTTP 503 if the singleton was not initialised (lifespan
not run, or shutdown already tore it down).
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from agentwatch.event_server.hub import BroadcastHub
from agentwatch.event_server.managers.ingest import IngestGateway
from agentwatch.event_server.managers.platforms import PlatformRegistry
from agentwatch.event_server.settings import AgentWatchSettings
from agentwatch.event_server.store.base import EventStore


def _state(request: Request, name: str) -> Any:
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Event server not ready ({name} is not initialised).",
        )
    return value


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """Yield an async SQLAlchemy session, closing it after the request.

    The caller (manager) is responsible for calling ``session.commit()``
    on success.  If the handler raises, the session is simply closed and the
    implicit transaction is rolled back.
    """
    session_factory = _state(request, "db_session_factory")
    session: AsyncSession = session_factory()
    try:
        yield session
    finally:
        await session.close()


async def get_store(request: Request) -> EventStore:
    return _state(request, "event_store")


async def get_gateway(request: Request) -> IngestGateway:
    return _state(request, "gateway")


async def get_hub(request: Request) -> BroadcastHub:
    return _state(request, "hub")


async def get_registry(request: Request) -> PlatformRegistry:
    return _state(request, "platform_registry")


async def get_app_settings(request: Request) -> AgentWatchSettings:
    return _state(request, "settings")


# -- Annotated type aliases for concise route signatures ---------------------

DbSession = Annotated[AsyncSession, Depends(get_db)]
"""Annotated dependency: async SQLAlchemy session (auto-closed after request)."""

Store = Annotated[EventStore, Depends(get_store)]
Gateway = Annotated[IngestGateway, Depends(get_gateway)]
Hub = Annotated[BroadcastHub, Depends(get_hub)]
Registry = Annotated[PlatformRegistry, Depends(get_registry)]
Settings = Annotated[AgentWatchSettings, Depends(get_app_settings)]
