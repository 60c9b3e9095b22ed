"""One open conversation: store, feeds and typing wired together."""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from booking_messenger.application.dto.session import Session
from booking_messenger.application.exceptions import FetchError
from booking_messenger.application.policies.permissions import (
    assert_can_send,
    messaging_disabled_reason,
)
from booking_messenger.application.ports.api import MessageApi
from booking_messenger.application.ports.bus import SignalBus
from booking_messenger.application.ports.clock import Clock, SystemClock
from booking_messenger.config import Settings, settings
from booking_messenger.domain.entities.conversation import Conversation
from booking_messenger.domain.entities.message import Message
from booking_messenger.domain.events.channel import PeerTyping
from booking_messenger.domain.events.signals import ConversationOpened
from booking_messenger.domain.value_objects.enums import MessageType
from booking_messenger.infrastructure.feeds.failover_feed import FailoverFeed
from booking_messenger.infrastructure.feeds.live_feed import LiveFeed
from booking_messenger.infrastructure.feeds.poll_feed import PollFeed
from booking_messenger.infrastructure.timers import Sleep
from booking_messenger.infrastructure.ws.transport import MessageTransport
from booking_messenger.services.message_store import MessageStore
from booking_messenger.services.typing_coordinator import TypingCoordinator

logger = logging.getLogger(__name__)


class ConversationRoom:
    def __init__(
        self,
        conversation_id: str,
        *,
        transport: MessageTransport,
        api: MessageApi,
        bus: SignalBus,
        session: Session,
        conversation: Conversation | None = None,
        cfg: Settings = settings,
        clock: Clock | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        clock = clock or SystemClock()
        self.conversation_id = conversation_id
        self._bus = bus
        self.typing = TypingCoordinator(
            session.user_id, self._send_typing, cfg=cfg, clock=clock, sleep=sleep,
        )
        self.live = LiveFeed(transport, conversation_id, cfg=cfg, on_typing=self._on_peer_typing)
        self.poll = PollFeed(
            api, conversation_id, cfg=cfg, should_poll=lambda: not self.live.is_connected,
        )
        self.feed = FailoverFeed(self.live, self.poll)
        self.store = MessageStore(
            conversation_id,
            api=api,
            feed=self.feed,
            session=session,
            bus=bus,
            cfg=cfg,
            clock=clock,
            conversation=conversation,
        )
        self._opened = False
        self._closed = False

    @property
    def conversation(self) -> Conversation | None:
        return self.store.conversation

    @property
    def messages(self) -> list[Message]:
        return self.store.messages

    @property
    def typing_text(self) -> str:
        return self.typing.text

    @property
    def disabled_reason(self) -> str | None:
        return messaging_disabled_reason(self.conversation)

    async def open(self) -> None:
        """Load history, start delivery and announce the conversation as read.

        A failed initial load leaves ``store.last_error`` set; polling keeps
        retrying in the background.
        """
        if self._opened:
            return
        self._opened = True
        try:
            await self.store.load_initial()
        except FetchError as exc:
            logger.warning("Conversation %s opened without history: %s", self.conversation_id, exc)
        await self.store.start()
        self._bus.publish(ConversationOpened(conversation_id=self.conversation_id))

    async def send(
        self,
        text: str,
        message_type: str = MessageType.TEXT,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        if self.conversation is None:
            await self._reload_conversation()
        assert_can_send(self.conversation)
        try:
            return await self.store.send_optimistic(text, message_type, metadata)
        finally:
            await self.typing.set_local_typing(False)

    async def set_typing(self, is_typing: bool) -> None:
        await self.typing.set_local_typing(is_typing)

    async def mark_read(self, message_id: str) -> bool:
        return await self.store.mark_read(message_id)

    async def search(self, query: str) -> list[Message]:
        return await self.store.search(query)

    def set_focused(self, focused: bool) -> None:
        self.poll.set_focused(focused)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.typing.clear()
        await self.store.close()

    def status(self) -> dict[str, Any]:
        error = self.store.last_error or self.live.last_error
        return {
            "conversation_id": self.conversation_id,
            "is_live": self.feed.is_live,
            "subscription_state": self.live.subscription_state.value,
            "message_count": len(self.store.messages),
            "typing": self.typing.text,
            "disabled_reason": self.disabled_reason,
            "last_error": error.detail if error else None,
        }

    async def _reload_conversation(self) -> None:
        # polling is gated off while live, so it cannot be relied on here
        try:
            await self.store.load_initial()
        except FetchError as exc:
            logger.warning("Booking %s still unknown: %s", self.conversation_id, exc)

    async def _send_typing(self, is_typing: bool) -> bool:
        return await self.live.send_typing(is_typing)

    def _on_peer_typing(self, event: PeerTyping) -> None:
        self.typing.on_peer_typing(event.user_id, event.is_typing)
