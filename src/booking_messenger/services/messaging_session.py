"""Everything that lives exactly as long as one login."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import redis.asyncio as aioredis

from booking_messenger.application.dto.session import Session
from booking_messenger.application.ports.api import MessageApi
from booking_messenger.application.ports.clock import Clock, SystemClock
from booking_messenger.application.ports.connector import LiveConnector
from booking_messenger.config import Settings, settings
from booking_messenger.domain.entities.conversation import Conversation
from booking_messenger.infrastructure.bus.local_bus import LocalSignalBus
from booking_messenger.infrastructure.bus.redis_pubsub import RedisSignalRelay
from booking_messenger.infrastructure.http.client import MarketplaceApiClient
from booking_messenger.infrastructure.timers import Sleep
from booking_messenger.infrastructure.ws.connector import WebsocketsConnector
from booking_messenger.infrastructure.ws.transport import MessageTransport
from booking_messenger.services.conversation_room import ConversationRoom
from booking_messenger.services.unread_aggregator import UnreadAggregator

logger = logging.getLogger(__name__)


class MessagingSession:
    """Owns the session's transport, signal bus and unread counter.

    Exactly one transport connection is shared by every open conversation.
    ``close`` tears all of it down; the instance is not reusable afterwards.
    """

    def __init__(
        self,
        session: Session,
        *,
        api: MessageApi,
        connector: LiveConnector | None,
        redis: aioredis.Redis | None = None,
        cfg: Settings = settings,
        clock: Clock | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.session = session
        self.api = api
        self.bus = LocalSignalBus()
        self._cfg = cfg
        self._clock = clock or SystemClock()
        self._sleep = sleep
        self._redis = redis
        self.transport = MessageTransport(connector, cfg=cfg, clock=self._clock, sleep=sleep)
        self.unread = UnreadAggregator(api, self.bus, session.user_id, cfg=cfg, sleep=sleep)
        self.relay = (
            RedisSignalRelay(redis, cfg.REDIS_SIGNAL_CHANNEL, self.bus) if redis is not None else None
        )
        self._rooms: dict[str, ConversationRoom] = {}
        self._owned: list[Any] = []
        self._closed = False

    @classmethod
    def from_settings(cls, session: Session, cfg: Settings = settings) -> MessagingSession:
        """Session wired to the real HTTP API, websocket and optional redis."""
        api = MarketplaceApiClient(lambda: session.token, cfg=cfg)
        redis = aioredis.from_url(cfg.REDIS_URL, decode_responses=True) if cfg.REDIS_URL else None
        instance = cls(session, api=api, connector=WebsocketsConnector(), redis=redis, cfg=cfg)
        instance._owned.append(api)
        if redis is not None:
            instance._owned.append(redis)
        return instance

    @property
    def rooms(self) -> dict[str, ConversationRoom]:
        return dict(self._rooms)

    async def start(self) -> None:
        await self.transport.connect(self.session.token)
        await self.unread.start()
        if self.relay is not None:
            await self.relay.start()
        logger.info("Messaging session started for user %s", self.session.user_id)

    async def open_conversation(self, conversation: Conversation | str) -> ConversationRoom:
        if isinstance(conversation, Conversation):
            conversation_id, known = conversation.id, conversation
        else:
            conversation_id, known = conversation, None
        room = self._rooms.get(conversation_id)
        if room is None:
            room = ConversationRoom(
                conversation_id,
                transport=self.transport,
                api=self.api,
                bus=self.bus,
                session=self.session,
                conversation=known,
                cfg=self._cfg,
                clock=self._clock,
                sleep=self._sleep,
            )
            self._rooms[conversation_id] = room
        await room.open()
        return room

    async def close_conversation(self, conversation_id: str) -> None:
        room = self._rooms.pop(conversation_id, None)
        if room is not None:
            await room.close()

    async def retry_connection(self) -> None:
        await self.transport.retry(self.session.token)

    def set_focused(self, focused: bool) -> None:
        for room in self._rooms.values():
            room.set_focused(focused)

    def status(self) -> dict[str, Any]:
        return {
            **self.transport.status(),
            "unread_count": self.unread.count,
            "unread_available": self.unread.available,
            "conversations": sorted(self._rooms),
        }

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        rooms, self._rooms = self._rooms, {}
        steps: list[Callable[[], Awaitable[None]]] = [room.close for room in rooms.values()]
        steps.append(self.unread.stop)
        if self.relay is not None:
            steps.append(self.relay.stop)
        steps.append(self.transport.disconnect)
        steps.extend(resource.aclose for resource in self._owned)
        # every step runs even when an earlier one fails
        for step in steps:
            try:
                await step()
            except Exception:
                logger.exception("Messaging session teardown step failed")
        self.bus.clear()
        logger.info("Messaging session closed for user %s", self.session.user_id)
