"""Ingest gateway -- the front door for submitted events.

The gateway is a process-level singleton initialised in the app lifespan.
For every submitted event it runs, in order:

1. **Rate limit** per ``source_app`` (token bucket, independent of sampling)
2. **Sampling** -- a uniform draw against ``events.sampling_rate``, before any
   validation cost is spent
3. **Validation / normalization** (``validation.normalize_event``)
4. **Capture filter** -- categories disabled via ``capture.<category>``
5. **Duplicate / parent checks** against the store
6. **Commit** through a bounded buffer with exponential-backoff retries

Committed events reach live subscribers through the store's commit
listener (wired to the broadcast hub in the lifespan), which fires in
commit order.

Batch items are processed one after another and independently: a failed
item never affects committed siblings, and later items may reference
earlier ones as parents.
"""

from __future__ import annotations

import asyncio
import random
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from loguru import logger

from agentwatch.event_server.models.enums import IngestStatus, WarningCode
from agentwatch.event_server.models.events import FieldError, IngestWarning, StoredEvent
from agentwatch.event_server.ratelimit import SourceRateLimiter
from agentwatch.event_server.store.base import DuplicateEventError, StoreUnavailableError
from agentwatch.event_server.validation import EventValidationError, NormalizerConfig, normalize_event

if TYPE_CHECKING:
    from collections.abc import Awaitable, Sequence

    from agentwatch.event_server.managers.platforms import PlatformRegistry
    from agentwatch.event_server.models.events import CanonicalEvent
    from agentwatch.event_server.settings import AgentWatchSettings
    from agentwatch.event_server.store.base import EventStore


class BatchTooLargeError(ValueError):
    """Raised when a batch exceeds ``events.batch_size`` items."""


@dataclass
class IngestOutcome:
    """Result of submitting one event."""

    status: IngestStatus
    id: str | None = None
    sequence: int | None = None
    warnings: list[IngestWarning] = field(default_factory=list)
    errors: list[FieldError] = field(default_factory=list)
    retryable: bool = False
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == IngestStatus.ACCEPTED

    @classmethod
    def accepted(cls, event: StoredEvent, warnings: list[IngestWarning]) -> IngestOutcome:
        return cls(status=IngestStatus.ACCEPTED, id=event.id, sequence=event.sequence, warnings=warnings)

    @classmethod
    def unavailable(cls, message: str) -> IngestOutcome:
        return cls(status=IngestStatus.UNAVAILABLE, retryable=True, message=message)


class IngestGateway:
    """Validates, samples, rate-limits and commits submitted events.

    Also tracks in-flight submissions so that shutdown can drain them:
    ``begin_shutdown`` refuses new work and ``wait_until_drained`` blocks
    until every accepted submission has finished committing.
    """

    def __init__(
        self,
        store: EventStore,
        registry: PlatformRegistry,
        settings: AgentWatchSettings,
        *,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._store = store
        self._registry = registry
        self._settings = settings
        self._normalizer = NormalizerConfig.from_settings(settings)
        self._limiter = SourceRateLimiter(settings.rate_limit.per_second, settings.rate_limit.burst)
        self._rng = rng
        self._slots = asyncio.Semaphore(settings.events.max_pending_commits)
        self._in_flight = 0
        self._drain_event = asyncio.Event()
        self._drain_event.set()
        self._shutting_down = False
        self.stats: Counter[str] = Counter()

    # -- Entry points ----------------------------------------------------------

    async def submit_one(self, raw: Any) -> IngestOutcome:
        if self._shutting_down:
            return self._count(IngestOutcome.unavailable("server is shutting down"))
        self._enter()
        try:
            return self._count(await self._ingest(raw, batch_ids=set()))
        finally:
            self._exit()

    async def submit_batch(self, raws: Sequence[Any]) -> list[IngestOutcome]:
        """Submit items independently; the result list matches *raws* index for index."""
        if len(raws) > self._settings.events.batch_size:
            msg = f"batch of {len(raws)} events exceeds the limit of {self._settings.events.batch_size}"
            raise BatchTooLargeError(msg)
        if self._shutting_down:
            return [self._count(IngestOutcome.unavailable("server is shutting down")) for _ in raws]

        self._enter()
        try:
            batch_ids: set[str] = set()
            outcomes: list[IngestOutcome] = []
            for raw in raws:
                outcome = self._count(await self._ingest(raw, batch_ids=batch_ids))
                if outcome.ok and outcome.id:
                    batch_ids.add(outcome.id)
                outcomes.append(outcome)
        finally:
            self._exit()

        accepted = sum(1 for o in outcomes if o.ok)
        logger.debug("Gateway: batch of {} processed ({} accepted)", len(raws), accepted)
        return outcomes

    # -- Pipeline --------------------------------------------------------------

    async def _ingest(self, raw: Any, *, batch_ids: set[str]) -> IngestOutcome:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._settings.timeout_ms / 1000

        source_app = raw.get("source_app") if isinstance(raw, dict) else None
        if not self._limiter.allow(str(source_app or "")):
            return IngestOutcome(
                status=IngestStatus.RATE_LIMITED,
                retryable=True,
                message=f"rate limit exceeded for source_app '{source_app}'",
            )

        rate = self._settings.events.sampling_rate
        if rate < 1.0 and self._rng() >= rate:
            return IngestOutcome(status=IngestStatus.SAMPLED_OUT)

        try:
            normalized = normalize_event(raw, config=self._normalizer, registry=self._registry.snapshot)
        except EventValidationError as exc:
            logger.debug("Gateway: rejected event: {}", exc)
            return IngestOutcome(status=IngestStatus.REJECTED, errors=exc.errors, message=str(exc))

        event = normalized.event
        if normalized.redacted_fields:
            logger.debug("Gateway: redacted {} field(s) in event {}", normalized.redacted_fields, event.id)
        if not self._settings.category_enabled(event.event_category):
            return IngestOutcome(
                status=IngestStatus.FILTERED,
                message=f"capture disabled for category '{event.event_category}'",
            )

        warnings = list(normalized.warnings)
        try:
            # Adapters retrying a submit resend the same id; answer with the stored copy.
            if isinstance(raw, dict) and raw.get("id"):
                existing = await self._retry(lambda: self._store.existing_ids([event.id]), deadline)
                if existing:
                    return await self._duplicate(event.id, warnings)

            if event.parent_event_id and event.parent_event_id not in batch_ids:
                parent_id = event.parent_event_id
                known = await self._retry(lambda: self._store.existing_ids([parent_id]), deadline)
                if not known:
                    logger.info("Gateway: event {} references unknown parent {}", event.id, parent_id)
                    warnings.append(
                        IngestWarning(
                            code=WarningCode.DANGLING_PARENT,
                            field="parent_event_id",
                            message=f"parent event '{parent_id}' has not been received (yet)",
                        )
                    )

            stored = await self._commit(event, deadline)
        except DuplicateEventError:
            return await self._duplicate(event.id, warnings)
        except StoreUnavailableError as exc:
            logger.warning("Gateway: giving up on event {}: {}", event.id, exc)
            return IngestOutcome.unavailable(str(exc))

        return IngestOutcome.accepted(stored, warnings)

    async def _commit(self, event: CanonicalEvent, deadline: float) -> StoredEvent:
        """Commit through the bounded buffer; waits at most until *deadline* for a slot."""
        if self._slots.locked():
            remaining = deadline - asyncio.get_running_loop().time()
            try:
                await asyncio.wait_for(self._slots.acquire(), timeout=max(remaining, 0))
            except TimeoutError:
                msg = "commit buffer full"
                raise StoreUnavailableError(msg) from None
        else:
            await self._slots.acquire()
        try:
            return await self._retry(lambda: self._store.commit(event), deadline)
        finally:
            self._slots.release()

    async def _retry(self, operation: Callable[[], Awaitable[Any]], deadline: float) -> Any:
        """Run *operation*, retrying ``StoreUnavailableError`` with exponential backoff.

        An attempt in progress is never cancelled; the deadline only stops
        further attempts, so an event is either fully committed or not at all.
        """
        loop = asyncio.get_running_loop()
        attempt = 0
        while True:
            try:
                return await operation()
            except StoreUnavailableError as exc:
                attempt += 1
                if attempt >= self._settings.retry_attempts:
                    raise
                delay = self._settings.retry_backoff_ms / 1000 * (2 ** (attempt - 1))
                delay += random.uniform(0.0, delay * 0.1)  # small jitter
                if loop.time() + delay > deadline:
                    raise
                logger.warning("Gateway: store unavailable (attempt {}), retrying in {:.3f}s: {}", attempt, delay, exc)
                await asyncio.sleep(delay)

    async def _duplicate(self, event_id: str, warnings: list[IngestWarning]) -> IngestOutcome:
        stored = await self._store.get(event_id)
        warnings.append(
            IngestWarning(
                code=WarningCode.DUPLICATE_EVENT,
                field="id",
                message=f"event '{event_id}' was already committed; returning the stored copy",
            )
        )
        return IngestOutcome.accepted(stored, warnings)

    def _count(self, outcome: IngestOutcome) -> IngestOutcome:
        self.stats[outcome.status.value] += 1
        return outcome

    # -- Lifecycle -------------------------------------------------------------

    def _enter(self) -> None:
        self._in_flight += 1
        self._drain_event.clear()

    def _exit(self) -> None:
        self._in_flight -= 1
        if self._in_flight == 0:
            self._drain_event.set()

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def begin_shutdown(self) -> None:
        """Refuse new submissions; in-flight ones keep running."""
        self._shutting_down = True
        logger.info("Gateway: shutdown initiated, refusing new events")

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    async def wait_until_drained(self, timeout: float | None = None) -> bool:
        """Wait until no submission is in flight.  ``False`` if *timeout* expired first."""
        if self._in_flight == 0:
            return True
        try:
            await asyncio.wait_for(self._drain_event.wait(), timeout=timeout)
        except TimeoutError:
            logger.warning("Gateway: drain timed out after {}s with {} submissions in flight", timeout, self._in_flight)
            return False
        else:
            return True
