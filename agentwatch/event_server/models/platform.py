"""Platform registry domain models."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PlatformInfo(BaseModel):
    """Metadata for an agent framework known to the server."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    name: str
    display_name: str
    version: str | None = None
    schema_version: str = "1.0"
    enabled: bool = True
    config: dict[str, Any] = Field(default_factory=dict)


class RegistrySnapshot:
    """Immutable point-in-time view of the platform registry.

    The validator only ever reads a snapshot; the registry manager swaps in a
    fresh one after each mutation, so the ingest path never touches the
    database for platform lookups.
    """

    def __init__(self, platforms: Iterable[PlatformInfo] = ()) -> None:
        self._platforms: Mapping[str, PlatformInfo] = MappingProxyType({p.name: p for p in platforms})

    def get(self, name: str) -> PlatformInfo | None:
        return self._platforms.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._platforms

    def __len__(self) -> int:
        return len(self._platforms)

    def names(self) -> list[str]:
        return sorted(self._platforms)


BUILTIN_PLATFORMS: tuple[PlatformInfo, ...] = (
    PlatformInfo(name="claude_code", display_name="Claude Code"),
    PlatformInfo(name="langchain", display_name="LangChain"),
    PlatformInfo(name="langgraph", display_name="LangGraph"),
    PlatformInfo(name="crewai", display_name="CrewAI"),
    PlatformInfo(name="autogen", display_name="AutoGen"),
    PlatformInfo(name="openai_agents", display_name="OpenAI Agents SDK"),
    PlatformInfo(name="llamaindex", display_name="LlamaIndex"),
    PlatformInfo(name="custom", display_name="Custom integration"),
)
"""Platforms seeded into an empty registry at startup."""
