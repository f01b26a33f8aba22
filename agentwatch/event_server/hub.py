"""In-process broadcast hub for live event streams.

Fans committed events out to every connected subscriber whose filter
matches.  Each subscription owns a bounded queue; ``publish`` never awaits,
so a slow or stuck subscriber cannot delay ingestion or other subscribers.
On overflow the *oldest* queued event is discarded and the subscription's
``dropped`` counter grows; the subscriber is told through an ``overrun``
message ahead of its next event.

Ephemeral -- empty on process restart.  All durable state lives in the
event store.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field

from loguru import logger

from agentwatch.event_server.models.enums import Severity, StreamMessageType
from agentwatch.event_server.models.events import StoredEvent, StreamMessage


class HubClosedError(RuntimeError):
    """Raised when subscribing after the hub has been shut down."""


def _split(values: str | Iterable[str] | None) -> frozenset[str]:
    if values is None:
        return frozenset()
    if isinstance(values, str):
        values = values.split(",")
    return frozenset(v.strip() for v in values if v and v.strip())


@dataclass(frozen=True)
class SubscriptionFilter:
    """Predicate over stream events.  Empty sets match everything.

    ``event_types`` entries ending in ``.*`` match by prefix, so ``tool.*``
    matches ``tool.invoked`` and ``tool.completed``.
    """

    platforms: frozenset[str] = field(default_factory=frozenset)
    session_ids: frozenset[str] = field(default_factory=frozenset)
    event_types: frozenset[str] = field(default_factory=frozenset)
    severities: frozenset[Severity] = field(default_factory=frozenset)

    @classmethod
    def from_params(
        cls,
        *,
        platform: str | Iterable[str] | None = None,
        session_id: str | Iterable[str] | None = None,
        event_type: str | Iterable[str] | None = None,
        severity: str | Iterable[str] | None = None,
    ) -> SubscriptionFilter:
        """Build a filter from comma-separated strings or iterables.

        Raises ``ValueError`` for an unknown severity name.
        """
        return cls(
            platforms=_split(platform),
            session_ids=_split(session_id),
            event_types=_split(event_type),
            severities=frozenset(Severity(s.lower()) for s in _split(severity)),
        )

    def matches(self, event: StoredEvent) -> bool:
        if self.platforms and event.platform not in self.platforms:
            return False
        if self.session_ids and event.session_id not in self.session_ids:
            return False
        if self.severities and event.severity not in self.severities:
            return False
        if self.event_types and not any(_type_matches(p, event.event_type) for p in self.event_types):
            return False
        return True

    def describe(self) -> dict[str, list[str]]:
        return {
            "platform": sorted(self.platforms),
            "session_id": sorted(self.session_ids),
            "event_type": sorted(self.event_types),
            "severity": sorted(s.value for s in self.severities),
        }


def _type_matches(pattern: str, event_type: str) -> bool:
    if pattern.endswith(".*"):
        return event_type.startswith(pattern[:-1])
    return pattern == event_type


class Subscription:
    """A live subscriber: filter predicate plus bounded drop-oldest queue.

    Iterate with ``async for message in subscription`` -- iteration ends once
    the subscription is closed and its queue drained.
    """

    def __init__(self, subscription_filter: SubscriptionFilter, capacity: int) -> None:
        if capacity < 1:
            msg = f"capacity must be >= 1, got {capacity}"
            raise ValueError(msg)
        self.id = uuid.uuid4().hex
        self.filter = subscription_filter
        self.capacity = capacity
        self.dropped = 0
        self.delivered = 0
        self._reported_dropped = 0
        self._queue: deque[StoredEvent] = deque()
        self._wakeup = asyncio.Event()
        self._closed = False

    # -- Producer side (hub) ---------------------------------------------------

    def offer(self, event: StoredEvent) -> None:
        """Enqueue without blocking; evict the oldest event when full."""
        if self._closed:
            return
        if len(self._queue) >= self.capacity:
            self._queue.popleft()
            self.dropped += 1
        self._queue.append(event)
        self._wakeup.set()

    def close(self) -> None:
        self._closed = True
        self._wakeup.set()

    # -- Consumer side ---------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return len(self._queue)

    async def get(self) -> StreamMessage | None:
        """Wait for the next message; ``None`` once closed and drained.

        An ``overrun`` notice carrying the cumulative drop count is returned
        before any further event whenever new drops happened since the last
        notice.
        """
        while True:
            if self.dropped > self._reported_dropped:
                self._reported_dropped = self.dropped
                return StreamMessage(type=StreamMessageType.OVERRUN, subscription_id=self.id, dropped=self.dropped)
            if self._queue:
                self.delivered += 1
                return StreamMessage(type=StreamMessageType.EVENT, event=self._queue.popleft())
            if self._closed:
                return None
            self._wakeup.clear()
            await self._wakeup.wait()

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> StreamMessage:
        message = await self.get()
        if message is None:
            raise StopAsyncIteration
        return message


class BroadcastHub:
    """Registry of live subscriptions and the fan-out point for commits.

    All methods run on the event loop thread; ``publish`` is synchronous so
    it can be used directly as an event store commit listener.
    """

    def __init__(self, queue_size: int = 1000) -> None:
        self._queue_size = queue_size
        self._subscriptions: dict[str, Subscription] = {}
        self._closed = False

    # -- Mutation --------------------------------------------------------------

    def subscribe(
        self,
        subscription_filter: SubscriptionFilter | None = None,
        capacity: int | None = None,
    ) -> Subscription:
        if self._closed:
            raise HubClosedError
        sub = Subscription(subscription_filter or SubscriptionFilter(), capacity or self._queue_size)
        self._subscriptions[sub.id] = sub
        logger.debug("Hub: subscribe {} (filter={})", sub.id, sub.filter.describe())
        return sub

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.close()
        if self._subscriptions.pop(subscription.id, None) is not None:
            logger.debug(
                "Hub: unsubscribe {} (delivered={}, dropped={})",
                subscription.id,
                subscription.delivered,
                subscription.dropped,
            )

    # -- Fan-out ---------------------------------------------------------------

    def publish(self, event: StoredEvent) -> int:
        """Offer *event* to every matching subscription.  Returns the match count."""
        matched = 0
        for sub in list(self._subscriptions.values()):
            if sub.filter.matches(event):
                before = sub.dropped
                sub.offer(event)
                matched += 1
                if sub.dropped > before and sub.dropped == 1:
                    logger.warning("Hub: subscriber {} is falling behind, dropping oldest events", sub.id)
        return matched

    @property
    def active_count(self) -> int:
        return len(self._subscriptions)

    # -- Lifecycle -------------------------------------------------------------

    def close_all(self) -> int:
        """Close every subscription and refuse new ones.  Returns the number closed.

        Queued events stay readable, so consumers drain what they already had
        before their stream ends.
        """
        self._closed = True
        subs = list(self._subscriptions.values())
        for sub in subs:
            sub.close()
        self._subscriptions.clear()
        if subs:
            logger.info("Hub: closed {} subscriptions", len(subs))
        return len(subs)
