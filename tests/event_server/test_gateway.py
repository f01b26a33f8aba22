"""Tests for the ingest gateway: outcomes, batching, retries and drain."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from loguru import logger

from agentwatch.event_server.managers.ingest import BatchTooLargeError, IngestGateway
from agentwatch.event_server.managers.platforms import PlatformRegistry
from agentwatch.event_server.models.enums import IngestStatus, WarningCode
from agentwatch.event_server.models.platform import BUILTIN_PLATFORMS
from agentwatch.event_server.settings import AgentWatchSettings
from agentwatch.event_server.store import SqlEventStore, StoreUnavailableError


class FlakyStore:
    """Delegates to a real store but fails the first *failures* commits."""

    def __init__(self, inner: SqlEventStore, failures: int) -> None:
        self.inner = inner
        self.failures = failures
        self.attempts = 0

    def __getattr__(self, name: str) -> Any:
        return getattr(self.inner, name)

    async def commit(self, event):
        self.attempts += 1
        if self.failures > 0:
            self.failures -= 1
            msg = "database restarting"
            raise StoreUnavailableError(msg)
        return await self.inner.commit(event)


class GatedStore:
    """Delegates to a real store but holds every commit until released."""

    def __init__(self, inner: SqlEventStore) -> None:
        self.inner = inner
        self.release = asyncio.Event()
        self.entered = asyncio.Event()

    def __getattr__(self, name: str) -> Any:
        return getattr(self.inner, name)

    async def commit(self, event):
        self.entered.set()
        await self.release.wait()
        return await self.inner.commit(event)


def make_settings(**overrides: Any) -> AgentWatchSettings:
    values: dict[str, Any] = {"_env_file": None, "retry_backoff_ms": 1, "timeout_ms": 2_000}
    values.update(overrides)
    return AgentWatchSettings(**values)


@pytest.fixture
def registry() -> PlatformRegistry:
    return PlatformRegistry(BUILTIN_PLATFORMS)


@pytest.fixture
def gateway(store: SqlEventStore, registry: PlatformRegistry, settings: AgentWatchSettings) -> IngestGateway:
    return IngestGateway(store, registry, settings)


# ---------------------------------------------------------------------------
# Single submit
# ---------------------------------------------------------------------------


async def test_accepted_event_is_committed(gateway: IngestGateway, store: SqlEventStore, make_event) -> None:
    outcome = await gateway.submit_one(make_event())

    assert outcome.status == IngestStatus.ACCEPTED
    assert outcome.sequence == 1
    assert (await store.get(outcome.id)).sequence == 1
    assert gateway.stats["accepted"] == 1


async def test_redaction_count_logged(gateway: IngestGateway, make_event) -> None:
    messages: list[str] = []
    sink = logger.add(messages.append, level="DEBUG", format="{message}")
    try:
        outcome = await gateway.submit_one(make_event(payload={"api_key": "k", "password": "p", "query": "q"}))
    finally:
        logger.remove(sink)

    assert f"Gateway: redacted 2 field(s) in event {outcome.id}" in [m.strip() for m in messages]


async def test_invalid_event_rejected_with_all_errors(gateway: IngestGateway, store: SqlEventStore) -> None:
    outcome = await gateway.submit_one({"platform": "langchain"})

    assert outcome.status == IngestStatus.REJECTED
    assert {e.field for e in outcome.errors} >= {"source_app", "session_id", "event_type", "timestamp"}
    assert not outcome.retryable
    assert await store.last_sequence() == 0


async def test_duplicate_id_returns_stored_copy(gateway: IngestGateway, make_event) -> None:
    first = await gateway.submit_one(make_event(id="evt-1"))
    second = await gateway.submit_one(make_event(id="evt-1", payload={"changed": True}))

    assert second.ok
    assert second.sequence == first.sequence
    assert [w.code for w in second.warnings] == [WarningCode.DUPLICATE_EVENT]


async def test_dangling_parent_accepted_with_warning(gateway: IngestGateway, make_event) -> None:
    outcome = await gateway.submit_one(make_event(parent_event_id="not-yet-seen"))

    assert outcome.ok
    assert [w.code for w in outcome.warnings] == [WarningCode.DANGLING_PARENT]


async def test_known_parent_has_no_warning(gateway: IngestGateway, make_event) -> None:
    parent = await gateway.submit_one(make_event())
    child = await gateway.submit_one(make_event(event_type="tool.completed", parent_event_id=parent.id))

    assert child.ok
    assert child.warnings == []


# ---------------------------------------------------------------------------
# Sampling, capture filter and rate limiting
# ---------------------------------------------------------------------------


async def test_sampled_out_events_are_not_stored(
    store: SqlEventStore, registry: PlatformRegistry, make_event
) -> None:
    settings = make_settings(events={"sampling_rate": 0.5})
    draws = iter([0.9, 0.1])
    gateway = IngestGateway(store, registry, settings, rng=lambda: next(draws))

    dropped = await gateway.submit_one(make_event())
    kept = await gateway.submit_one(make_event())

    assert dropped.status == IngestStatus.SAMPLED_OUT
    assert kept.ok
    assert await store.last_sequence() == 1


async def test_sampling_happens_before_validation(store: SqlEventStore, registry: PlatformRegistry) -> None:
    gateway = IngestGateway(store, registry, make_settings(events={"sampling_rate": 0.0}))
    outcome = await gateway.submit_one({"garbage": True})
    assert outcome.status == IngestStatus.SAMPLED_OUT


async def test_disabled_category_is_filtered(store: SqlEventStore, registry: PlatformRegistry, make_event) -> None:
    gateway = IngestGateway(store, registry, make_settings(capture={"LLM": False}))

    filtered = await gateway.submit_one(make_event(event_type="llm.request"))
    kept = await gateway.submit_one(make_event(event_type="tool.invoked"))

    assert filtered.status == IngestStatus.FILTERED
    assert kept.ok


async def test_rate_limit_per_source_app(store: SqlEventStore, registry: PlatformRegistry, make_event) -> None:
    gateway = IngestGateway(store, registry, make_settings(rate_limit={"per_second": 0.001, "burst": 2}))

    outcomes = [await gateway.submit_one(make_event(source_app="noisy")) for _ in range(3)]
    other = await gateway.submit_one(make_event(source_app="quiet"))

    assert [o.status for o in outcomes] == [IngestStatus.ACCEPTED, IngestStatus.ACCEPTED, IngestStatus.RATE_LIMITED]
    assert outcomes[2].retryable
    assert other.ok


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------


async def test_partial_batch_success(gateway: IngestGateway, store: SqlEventStore, make_event) -> None:
    outcomes = await gateway.submit_batch([make_event(), {"platform": "langchain"}, make_event()])

    assert [o.status for o in outcomes] == [IngestStatus.ACCEPTED, IngestStatus.REJECTED, IngestStatus.ACCEPTED]
    assert [o.sequence for o in outcomes if o.ok] == [1, 2]
    assert outcomes[1].errors
    assert await store.last_sequence() == 2


async def test_batch_parent_resolved_within_batch(gateway: IngestGateway, make_event) -> None:
    outcomes = await gateway.submit_batch(
        [
            make_event(id="start"),
            make_event(id="end", event_type="tool.completed", parent_event_id="start"),
        ]
    )
    assert all(o.ok for o in outcomes)
    assert outcomes[1].warnings == []


async def test_batch_over_limit_refused(store: SqlEventStore, registry: PlatformRegistry, make_event) -> None:
    gateway = IngestGateway(store, registry, make_settings(events={"batch_size": 2}))
    with pytest.raises(BatchTooLargeError):
        await gateway.submit_batch([make_event() for _ in range(3)])


# ---------------------------------------------------------------------------
# Store failures
# ---------------------------------------------------------------------------


async def test_transient_store_failure_is_retried(store: SqlEventStore, registry: PlatformRegistry, make_event) -> None:
    flaky = FlakyStore(store, failures=2)
    gateway = IngestGateway(flaky, registry, make_settings(retry_attempts=3))

    outcome = await gateway.submit_one(make_event())

    assert outcome.ok
    assert flaky.attempts == 3
    assert outcome.sequence == 1


async def test_persistent_store_failure_is_unavailable(
    store: SqlEventStore, registry: PlatformRegistry, make_event
) -> None:
    flaky = FlakyStore(store, failures=10)
    gateway = IngestGateway(flaky, registry, make_settings(retry_attempts=3))

    outcome = await gateway.submit_one(make_event())

    assert outcome.status == IngestStatus.UNAVAILABLE
    assert outcome.retryable
    assert flaky.attempts == 3
    assert await store.last_sequence() == 0


async def test_retries_stop_at_deadline(store: SqlEventStore, registry: PlatformRegistry, make_event) -> None:
    flaky = FlakyStore(store, failures=10)
    settings = make_settings(retry_attempts=10, retry_backoff_ms=200, timeout_ms=100)
    gateway = IngestGateway(flaky, registry, settings)

    outcome = await gateway.submit_one(make_event())

    assert outcome.status == IngestStatus.UNAVAILABLE
    assert flaky.attempts == 1


# ---------------------------------------------------------------------------
# Concurrency and shutdown
# ---------------------------------------------------------------------------


async def test_concurrent_submitters_get_contiguous_sequences(gateway: IngestGateway, make_event) -> None:
    async def submitter(n: int) -> list[int]:
        sequences = []
        for i in range(100):
            outcome = await gateway.submit_one(make_event(session_id=f"s{n}", payload={"i": i}))
            assert outcome.ok
            sequences.append(outcome.sequence)
        return sequences

    results = await asyncio.gather(*(submitter(n) for n in range(10)))

    assert sorted(s for seqs in results for s in seqs) == list(range(1, 1001))
    for seqs in results:
        assert seqs == sorted(seqs)


async def test_shutdown_drains_in_flight_commits(
    store: SqlEventStore, registry: PlatformRegistry, settings: AgentWatchSettings, make_event
) -> None:
    gated = GatedStore(store)
    gateway = IngestGateway(gated, registry, settings)

    pending = asyncio.create_task(gateway.submit_one(make_event()))
    await asyncio.wait_for(gated.entered.wait(), timeout=1)

    gateway.begin_shutdown()
    refused = await gateway.submit_one(make_event())
    assert refused.status == IngestStatus.UNAVAILABLE
    assert gateway.in_flight == 1
    assert await gateway.wait_until_drained(timeout=0.05) is False

    gated.release.set()
    assert await gateway.wait_until_drained(timeout=1) is True
    outcome = await pending
    assert outcome.ok
    assert await store.last_sequence() == 1
