"""Platform registry operations.

Encapsulates platform data access (create, list, get, update, disable) and
the in-memory ``RegistrySnapshot`` the validator consults on the ingest
path.  Mutations are administrative and rare; after each one the snapshot is
rebuilt from the table.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger
from sqlalchemy import select

from agentwatch.event_server.db.tables import Platform
from agentwatch.event_server.models.platform import BUILTIN_PLATFORMS, PlatformInfo, RegistrySnapshot

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

    from agentwatch.event_server.models.api import PlatformCreate, PlatformUpdate


class DuplicatePlatformError(ValueError):
    """Raised when a platform with the given name already exists."""


class PlatformNotFoundError(LookupError):
    """Raised when a platform is not found."""


class PlatformRegistry:
    """Holds the current registry snapshot.

    Reads are a plain attribute access; ``refresh`` swaps in a new immutable
    snapshot, so readers never observe a half-updated registry.
    """

    def __init__(self, platforms: Iterable[PlatformInfo] = ()) -> None:
        self._snapshot = RegistrySnapshot(platforms)

    @property
    def snapshot(self) -> RegistrySnapshot:
        return self._snapshot

    def replace(self, platforms: Iterable[PlatformInfo]) -> None:
        self._snapshot = RegistrySnapshot(platforms)

    async def refresh(self, db: AsyncSession) -> RegistrySnapshot:
        rows = await list_platforms(db)
        self.replace(PlatformInfo.model_validate(row) for row in rows)
        return self._snapshot


async def seed_builtin_platforms(db: AsyncSession) -> int:
    """Insert built-in platforms that are missing.  Returns the number added."""
    result = await db.scalars(select(Platform.name))
    existing = set(result.all())
    added = 0
    for info in BUILTIN_PLATFORMS:
        if info.name not in existing:
            db.add(Platform(**info.model_dump()))
            added += 1
    if added:
        await db.commit()
        logger.info("Platform registry: seeded {} built-in platforms", added)
    return added


async def create_platform(db: AsyncSession, body: PlatformCreate, registry: PlatformRegistry | None = None) -> Platform:
    """Register a new platform.  Raises ``DuplicatePlatformError`` if the name exists."""
    if await db.get(Platform, body.name) is not None:
        raise DuplicatePlatformError(body.name)

    platform = Platform(**body.model_dump())
    db.add(platform)
    await db.commit()
    await db.refresh(platform)
    logger.info("Platform registered: {}", platform.name)
    if registry is not None:
        await registry.refresh(db)
    return platform


async def list_platforms(db: AsyncSession) -> list[Platform]:
    """List all platforms ordered by name."""
    result = await db.execute(select(Platform).order_by(Platform.name))
    return list(result.scalars().all())


async def get_platform(db: AsyncSession, name: str) -> Platform:
    """Get a platform by name.  Raises ``PlatformNotFoundError`` if missing."""
    platform = await db.get(Platform, name)
    if platform is None:
        raise PlatformNotFoundError(name)
    return platform


async def update_platform(
    db: AsyncSession,
    name: str,
    body: PlatformUpdate,
    registry: PlatformRegistry | None = None,
) -> Platform:
    """Partially update a platform.  Raises ``PlatformNotFoundError`` if missing."""
    platform = await get_platform(db, name)

    changes = body.model_dump(exclude_unset=True)
    if not changes:
        return platform

    for key, value in changes.items():
        setattr(platform, key, value)

    await db.commit()
    await db.refresh(platform)
    logger.info("Platform updated: {} ({})", name, ", ".join(sorted(changes)))
    if registry is not None:
        await registry.refresh(db)
    return platform


async def disable_platform(db: AsyncSession, name: str, registry: PlatformRegistry | None = None) -> Platform:
    """Disable a platform; its events are refused from then on."""
    platform = await get_platform(db, name)
    if platform.enabled:
        platform.enabled = False
        await db.commit()
        await db.refresh(platform)
        logger.info("Platform disabled: {}", name)
        if registry is not None:
            await registry.refresh(db)
    return platform
