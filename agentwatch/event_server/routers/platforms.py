"""Platform registry endpoints (RPC-style).

All write operations use POST; reads use GET.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from agentwatch.event_server.db.tables import Platform
from agentwatch.event_server.deps import DbSession, Registry, Settings
from agentwatch.event_server.managers import platforms as platform_manager
from agentwatch.event_server.managers.platforms import DuplicatePlatformError, PlatformNotFoundError
from agentwatch.event_server.models.api import (
    ClientHints,
    PlatformCreate,
    PlatformResponse,
    PlatformSchemaResponse,
    PlatformUpdate,
)
from agentwatch.event_server.models.enums import KNOWN_EVENT_TYPES
from agentwatch.event_server.validation import REQUIRED_FIELDS

router = APIRouter(prefix="/platforms", tags=["platforms"])


def _not_found(name: str) -> HTTPException:
    return HTTPException(status.HTTP_404_NOT_FOUND, detail=f"Platform '{name}' not found.")


@router.get("", response_model=list[PlatformResponse])
async def list_platforms(db: DbSession) -> list[Platform]:
    """List all registered platforms, ordered by name."""
    return await platform_manager.list_platforms(db)


@router.get("/{name}/schema", response_model=PlatformSchemaResponse)
async def get_platform_schema(name: str, db: DbSession, settings: Settings) -> PlatformSchemaResponse:
    """Platform metadata plus the ingestion hints its adapter should follow."""
    try:
        platform = await platform_manager.get_platform(db, name)
    except PlatformNotFoundError:
        raise _not_found(name) from None

    return PlatformSchemaResponse(
        platform=PlatformResponse.model_validate(platform),
        required_fields=list(REQUIRED_FIELDS),
        recommended_event_types=sorted(KNOWN_EVENT_TYPES),
        client=ClientHints(
            server_url=settings.server.url,
            protocol=settings.server.protocol,
            batch_size=settings.events.batch_size,
            flush_interval_ms=settings.events.flush_interval_ms,
            max_payload_size_kb=settings.events.max_payload_size_kb,
            sampling_rate=settings.events.sampling_rate,
        ),
    )


@router.post("/create", response_model=PlatformResponse, status_code=status.HTTP_201_CREATED)
async def create_platform(body: PlatformCreate, db: DbSession, registry: Registry) -> Platform:
    """Register a new platform."""
    try:
        return await platform_manager.create_platform(db, body, registry)
    except DuplicatePlatformError:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=f"Platform '{body.name}' already exists.") from None


@router.post("/{name}/update", response_model=PlatformResponse)
async def update_platform(name: str, body: PlatformUpdate, db: DbSession, registry: Registry) -> Platform:
    """Partially update a platform."""
    try:
        return await platform_manager.update_platform(db, name, body, registry)
    except PlatformNotFoundError:
        raise _not_found(name) from None


@router.post("/{name}/disable", response_model=PlatformResponse)
async def disable_platform(name: str, db: DbSession, registry: Registry) -> Platform:
    """Disable a platform; its events are rejected from then on."""
    try:
        return await platform_manager.disable_platform(db, name, registry)
    except PlatformNotFoundError:
        raise _not_found(name) from None
