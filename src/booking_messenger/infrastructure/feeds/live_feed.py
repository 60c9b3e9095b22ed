"""Push delivery over a conversation's live subscription."""
from __future__ import annotations

import asyncio
import logging
from typing import Callable

from booking_messenger.application.dto.message import OutgoingMessage
from booking_messenger.application.exceptions import (
    AppError,
    ChannelConnectionError,
    ChannelRejectedError,
    SendError,
)
from booking_messenger.application.ports.feed import FeedSink
from booking_messenger.config import Settings, settings
from booking_messenger.domain.entities.message import Message
from booking_messenger.domain.events.channel import (
    ChannelFailure,
    ConnectionConfirmed,
    PeerTyping,
    SubscriptionRejected,
)
from booking_messenger.domain.value_objects.enums import SubscriptionState
from booking_messenger.infrastructure.ws.subscription import SubscriptionHandle, SubscriptionHandlers
from booking_messenger.infrastructure.ws.transport import MessageTransport

logger = logging.getLogger(__name__)

TypingCallback = Callable[[PeerTyping], None]
StatusListener = Callable[[], None]


class LiveFeed:
    """Delivers pushed messages to the sink and sends over the channel.

    Sends are confirmed by the channel's ``message_sent`` ack (or the
    ``new_message`` echo) carrying the same correlation id; acks without
    one resolve the oldest outstanding send.
    """

    def __init__(
        self,
        transport: MessageTransport,
        conversation_id: str,
        *,
        cfg: Settings = settings,
        on_typing: TypingCallback | None = None,
    ) -> None:
        self._transport = transport
        self._conversation_id = conversation_id
        self._cfg = cfg
        self._on_typing_cb = on_typing
        self._subscription: SubscriptionHandle | None = None
        self._sink: FeedSink | None = None
        self._acks: dict[str, asyncio.Future[Message]] = {}
        self._listeners: list[StatusListener] = []
        self.last_error: AppError | None = None

    @property
    def is_connected(self) -> bool:
        return self._subscription is not None and self._subscription.is_connected

    @property
    def subscription_state(self) -> SubscriptionState:
        if self._subscription is None:
            return SubscriptionState.PENDING
        return self._subscription.state

    @property
    def subscription(self) -> SubscriptionHandle | None:
        return self._subscription

    def add_status_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    async def start(self, sink: FeedSink) -> None:
        self._sink = sink
        self._subscription = self._transport.subscribe(
            self._conversation_id,
            SubscriptionHandlers(
                on_connected=self._notify,
                on_disconnected=self._notify,
                on_connection_confirmed=self._on_connection_confirmed,
                on_new_message=self._on_new_message,
                on_typing=self._on_typing,
                on_message_sent=self._on_message_sent,
                on_error=self._on_error,
                on_rejected=self._on_rejected,
            ),
        )

    async def stop(self) -> None:
        subscription, self._subscription = self._subscription, None
        self._sink = None
        self._fail_acks(SendError("Conversation closed"))
        if subscription is not None:
            await subscription.unsubscribe()

    async def send_typing(self, is_typing: bool) -> bool:
        if self._subscription is None:
            return False
        return await self._subscription.send_typing(is_typing)

    async def try_send(self, outgoing: OutgoingMessage) -> Message | None:
        """Send over the channel; None when the channel did not take the frame."""
        if self._subscription is None or not self.is_connected:
            return None
        future: asyncio.Future[Message] = asyncio.get_running_loop().create_future()
        self._acks[outgoing.correlation_id] = future
        try:
            if not await self._subscription.send_message(outgoing):
                return None
            return await asyncio.wait_for(future, timeout=self._cfg.SEND_ACK_TIMEOUT_SECONDS)
        except TimeoutError:
            raise SendError("No acknowledgement from the live channel") from None
        finally:
            self._acks.pop(outgoing.correlation_id, None)

    async def send(self, outgoing: OutgoingMessage) -> Message:
        confirmed = await self.try_send(outgoing)
        if confirmed is None:
            raise SendError("Live channel not connected")
        return confirmed

    def _on_connection_confirmed(self, event: ConnectionConfirmed) -> None:
        self.last_error = None
        self._notify()

    def _on_new_message(self, message: Message) -> None:
        if self._sink is not None:
            self._sink.receive_live(message)
        self._resolve_ack(message, fifo=False)
        if self._on_typing_cb is not None:
            self._on_typing_cb(PeerTyping(self._conversation_id, message.sender.id, False))

    def _on_message_sent(self, message: Message) -> None:
        if self._sink is not None:
            self._sink.receive_live(message)
        self._resolve_ack(message, fifo=True)

    def _on_typing(self, event: PeerTyping) -> None:
        if self._on_typing_cb is not None:
            self._on_typing_cb(event)

    def _on_error(self, failure: ChannelFailure) -> None:
        logger.warning("Channel error on conversation %s: %s", self._conversation_id, failure.detail)
        self.last_error = ChannelConnectionError(failure.detail)
        pending = next((f for f in self._acks.values() if not f.done()), None)
        if pending is not None:
            pending.set_exception(SendError(failure.detail))
        self._notify()

    def _on_rejected(self, event: SubscriptionRejected) -> None:
        self.last_error = ChannelRejectedError("Connection rejected - check permissions")
        self._fail_acks(SendError("Subscription rejected"))
        self._notify()

    def _resolve_ack(self, message: Message, *, fifo: bool) -> None:
        correlation_id = message.correlation_id
        future = self._acks.get(correlation_id) if correlation_id else None
        if future is None and fifo and not correlation_id:
            future = next((f for f in self._acks.values() if not f.done()), None)
        if future is not None and not future.done():
            future.set_result(message)

    def _fail_acks(self, error: SendError) -> None:
        for future in self._acks.values():
            if not future.done():
                future.set_exception(error)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Live feed status listener failed")
