"""Redis Pub/Sub relay mirroring user-action signals across processes."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable
from uuid import uuid4

import redis.asyncio as aioredis

from booking_messenger.application.ports.bus import SignalBus
from booking_messenger.domain.events.signals import ConversationOpened, MessageRead, Signal
from booking_messenger.infrastructure.bus.serializer import deserialize_signal, serialize_signal

logger = logging.getLogger(__name__)

RELAYED_SIGNALS: tuple[type, ...] = (MessageRead, ConversationOpened)


class RedisSignalRelay:
    """Publishes local read/open signals and replays those of other processes.

    Every process of the same user shares ``channel``; envelopes carry an
    origin id so a process never replays its own signals.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        channel: str,
        bus: SignalBus,
        *,
        origin: str | None = None,
    ) -> None:
        self._redis = redis
        self._channel = channel
        self._bus = bus
        self.origin = origin or uuid4().hex
        self._task: asyncio.Task[None] | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._pending: set[asyncio.Task[Any]] = set()
        self._replaying = False

    async def start(self) -> None:
        self._unsubscribe = self._bus.subscribe(self._on_local_signal)
        self._task = asyncio.create_task(self._listen(), name="redis-signal-relay")
        logger.info("Redis signal relay started on channel=%s", self._channel)

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Redis signal relay listener failed")
            self._task = None
            logger.info("Redis signal relay stopped")

    async def publish(self, signal: Signal) -> None:
        await self._redis.publish(self._channel, serialize_signal(self.origin, signal))

    def _on_local_signal(self, signal: Signal) -> None:
        if self._replaying or not isinstance(signal, RELAYED_SIGNALS):
            return
        task = asyncio.get_running_loop().create_task(self._publish_logged(signal))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _publish_logged(self, signal: Signal) -> None:
        try:
            await self.publish(signal)
        except aioredis.RedisError:
            logger.warning("Failed to relay %s", type(signal).__name__, exc_info=True)

    async def _listen(self) -> None:
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(self._channel)
        try:
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    self._replay(message["data"])
                except Exception:
                    logger.exception("Error processing relayed signal")
        finally:
            await pubsub.unsubscribe(self._channel)
            await pubsub.aclose()

    def _replay(self, raw: str | bytes) -> None:
        origin, signal = deserialize_signal(raw)
        if signal is None or origin == self.origin:
            return
        self._replaying = True
        try:
            self._bus.publish(signal)
        finally:
            self._replaying = False
