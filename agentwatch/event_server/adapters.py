"""Contract for platform adapters.

Adapters live in the agent runtimes, outside this server: each one turns a
framework's native callback or trace object into a canonical event dict and
submits it over HTTP.  The wire format is the only compatibility surface,
so this module only pins down the translation shape adapters are expected
to follow.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class EventAdapter(Protocol):
    """Translates native framework events into canonical event dicts."""

    platform: str
    """Registry name of the framework, e.g. ``langchain``."""

    def translate(self, native_event: Any) -> dict[str, Any] | None:
        """Return a canonical event dict, or ``None`` for events not worth reporting."""
        ...


def translate_batch(adapter: EventAdapter, native_events: Iterable[Any]) -> list[dict[str, Any]]:
    """Translate *native_events* into a batch body, skipping ignored events.

    ``platform`` is filled from the adapter when the translation left it out.
    """
    batch: list[dict[str, Any]] = []
    for native in native_events:
        event = adapter.translate(native)
        if event is None:
            continue
        event.setdefault("platform", adapter.platform)
        batch.append(event)
    return batch
