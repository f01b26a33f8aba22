"""Unit tests for the broadcast hub and subscription filters."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import pytest

from agentwatch.event_server.hub import BroadcastHub, HubClosedError, SubscriptionFilter
from agentwatch.event_server.models.enums import Severity, StreamMessageType
from agentwatch.event_server.models.events import StoredEvent

T0 = datetime(2026, 6, 1, tzinfo=UTC)


def stored(sequence: int, **fields) -> StoredEvent:
    data = {
        "id": f"e{sequence}",
        "sequence": sequence,
        "platform": "langchain",
        "source_app": "app",
        "session_id": "s1",
        "event_type": "tool.invoked",
        "event_category": "tool",
        "timestamp": T0,
        "ingested_at": T0,
    }
    data.update(fields)
    return StoredEvent(**data)


async def drain(subscription, count: int) -> list:
    return [await asyncio.wait_for(subscription.get(), timeout=1) for _ in range(count)]


async def test_publish_delivers_in_commit_order() -> None:
    hub = BroadcastHub(queue_size=10)
    sub = hub.subscribe()

    for seq in range(1, 4):
        hub.publish(stored(seq))

    messages = await drain(sub, 3)
    assert [m.event.sequence for m in messages] == [1, 2, 3]
    assert all(m.type == StreamMessageType.EVENT for m in messages)


async def test_filter_predicates() -> None:
    hub = BroadcastHub()
    by_platform = hub.subscribe(SubscriptionFilter.from_params(platform="crewai"))
    by_type = hub.subscribe(SubscriptionFilter.from_params(event_type="llm.*,error.occurred"))
    by_severity = hub.subscribe(SubscriptionFilter.from_params(severity="error,critical"))

    hub.publish(stored(1, platform="crewai"))
    hub.publish(stored(2, event_type="llm.request", event_category="llm"))
    hub.publish(stored(3, event_type="error.occurred", severity=Severity.ERROR))

    assert [m.event.sequence for m in await drain(by_platform, 1)] == [1]
    assert [m.event.sequence for m in await drain(by_type, 2)] == [2, 3]
    assert [m.event.sequence for m in await drain(by_severity, 1)] == [3]
    assert by_platform.pending == by_type.pending == by_severity.pending == 0


def test_invalid_severity_filter_rejected() -> None:
    with pytest.raises(ValueError):
        SubscriptionFilter.from_params(severity="loud")


async def test_overrun_drops_oldest_and_notifies() -> None:
    hub = BroadcastHub()
    sub = hub.subscribe(capacity=3)

    for seq in range(1, 6):
        hub.publish(stored(seq))

    assert sub.dropped == 2
    overrun, *events = await drain(sub, 4)
    assert overrun.type == StreamMessageType.OVERRUN
    assert overrun.dropped == 2
    assert [m.event.sequence for m in events] == [3, 4, 5]


async def test_slow_subscriber_does_not_affect_others() -> None:
    hub = BroadcastHub()
    stuck = hub.subscribe(capacity=2)
    healthy = hub.subscribe(capacity=100)

    for seq in range(1, 51):
        assert hub.publish(stored(seq)) == 2

    messages = await drain(healthy, 50)
    assert [m.event.sequence for m in messages] == list(range(1, 51))
    assert healthy.dropped == 0
    assert stuck.dropped == 48
    assert stuck.pending == 2


async def test_overrun_count_is_cumulative() -> None:
    hub = BroadcastHub()
    sub = hub.subscribe(capacity=1)

    hub.publish(stored(1))
    hub.publish(stored(2))
    first = await drain(sub, 2)
    hub.publish(stored(3))
    hub.publish(stored(4))
    second = await drain(sub, 2)

    assert [first[0].dropped, second[0].dropped] == [1, 2]
    assert second[1].event.sequence == 4


async def test_get_waits_for_publish() -> None:
    hub = BroadcastHub()
    sub = hub.subscribe()

    waiter = asyncio.create_task(sub.get())
    await asyncio.sleep(0)
    assert not waiter.done()

    hub.publish(stored(1))
    message = await asyncio.wait_for(waiter, timeout=1)
    assert message.event.id == "e1"


async def test_unsubscribe_releases_immediately() -> None:
    hub = BroadcastHub()
    sub = hub.subscribe()
    assert hub.active_count == 1

    hub.unsubscribe(sub)

    assert hub.active_count == 0
    assert hub.publish(stored(1)) == 0
    assert await sub.get() is None


async def test_close_all_drains_then_ends_iteration() -> None:
    hub = BroadcastHub()
    sub = hub.subscribe()
    hub.publish(stored(1))

    assert hub.close_all() == 1

    received = [m async for m in sub]
    assert [m.event.sequence for m in received] == [1]
    with pytest.raises(HubClosedError):
        hub.subscribe()
