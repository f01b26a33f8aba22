"""Cross-instance stream relay over Redis pub/sub.

When several server processes share one database, each process only sees
its own commits through its local hub.  The relay publishes every local
commit on a Redis channel and feeds commits made by sibling instances into
the local hub, so any subscriber sees every committed event.

Local subscribers still receive local commits directly (and in commit
order); the relay only adds remote ones.  Delivery through Redis is
best-effort: a Redis outage never affects ingestion.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import uuid
from typing import TYPE_CHECKING

from loguru import logger
from pydantic import ValidationError
from redis.exceptions import RedisError

from agentwatch.event_server.models.events import StoredEvent

if TYPE_CHECKING:
    import redis.asyncio as aioredis

    from agentwatch.event_server.hub import BroadcastHub

DEFAULT_CHANNEL = "agentwatch:events"
_RECONNECT_DELAY = 1.0


class RedisRelay:
    def __init__(
        self,
        redis: aioredis.Redis,
        hub: BroadcastHub,
        *,
        channel: str = DEFAULT_CHANNEL,
        outbox_size: int = 10_000,
    ) -> None:
        self.instance_id = uuid.uuid4().hex
        self._redis = redis
        self._hub = hub
        self._channel = channel
        self._outbox: asyncio.Queue[StoredEvent] = asyncio.Queue(maxsize=outbox_size)
        self._tasks: list[asyncio.Task[None]] = []
        self.dropped = 0

    # -- Commit listener -------------------------------------------------------

    def on_commit(self, event: StoredEvent) -> None:
        """Queue a local commit for publication.  Never blocks."""
        try:
            self._outbox.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 1000 == 0:
                logger.warning("Relay: outbox full, {} events not relayed so far", self.dropped)

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        self._tasks = [
            asyncio.create_task(self._publish_loop(), name="relay-publish"),
            asyncio.create_task(self._listen_loop(), name="relay-listen"),
        ]
        logger.info("Relay: started on channel {} (instance={})", self._channel, self.instance_id)

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []
        logger.info("Relay: stopped")

    # -- Loops -----------------------------------------------------------------

    async def _publish_loop(self) -> None:
        while True:
            event = await self._outbox.get()
            message = json.dumps({"origin": self.instance_id, "event": event.model_dump(mode="json")})
            try:
                await self._redis.publish(self._channel, message)
            except RedisError as exc:
                logger.warning("Relay: publish failed for sequence {}: {}", event.sequence, exc)

    async def _listen_loop(self) -> None:
        while True:
            pubsub = self._redis.pubsub(ignore_subscribe_messages=True)
            try:
                await pubsub.subscribe(self._channel)
                async for message in pubsub.listen():
                    if message.get("type") == "message":
                        self._deliver(message["data"])
            except RedisError as exc:
                logger.warning("Relay: subscription lost ({}), reconnecting in {}s", exc, _RECONNECT_DELAY)
                await asyncio.sleep(_RECONNECT_DELAY)
            finally:
                with contextlib.suppress(RedisError):
                    await pubsub.aclose()

    def _deliver(self, data: bytes | str) -> None:
        try:
            envelope = json.loads(data)
            if envelope.get("origin") == self.instance_id:
                return
            event = StoredEvent.model_validate(envelope["event"])
        except (ValueError, KeyError, ValidationError) as exc:
            logger.warning("Relay: ignoring malformed message: {}", exc)
            return
        self._hub.publish(event)
