"""Per-conversation subscription layered on the shared transport."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Protocol

from booking_messenger.application.dto.message import OutgoingMessage
from booking_messenger.domain.entities.message import Message
from booking_messenger.domain.events.channel import (
    ChannelEvent,
    ChannelFailure,
    ConnectionConfirmed,
    MessageSentAck,
    NewMessage,
    PeerTyping,
    SubscriptionRejected,
)
from booking_messenger.domain.value_objects.enums import ChannelEventType, SubscriptionState
from booking_messenger.infrastructure.timers import Sleep, Timers
from booking_messenger.infrastructure.wire.mappers import parse_message
from booking_messenger.infrastructure.ws.protocol import send_message_payload, typing_payload

if TYPE_CHECKING:
    from booking_messenger.infrastructure.ws.transport import MessageTransport

logger = logging.getLogger(__name__)


@dataclass
class SubscriptionHandlers:
    on_connected: Callable[[], None] | None = None
    on_disconnected: Callable[[], None] | None = None
    on_connection_confirmed: Callable[[ConnectionConfirmed], None] | None = None
    on_new_message: Callable[[Message], None] | None = None
    on_typing: Callable[[PeerTyping], None] | None = None
    on_message_sent: Callable[[Message], None] | None = None
    on_error: Callable[[ChannelFailure], None] | None = None
    on_rejected: Callable[[SubscriptionRejected], None] | None = None


class SubscriptionHandle(Protocol):
    conversation_id: str

    @property
    def state(self) -> SubscriptionState: ...

    @property
    def is_connected(self) -> bool: ...

    async def send(self, payload: dict[str, Any]) -> bool: ...

    async def send_message(self, outgoing: OutgoingMessage) -> bool: ...

    async def send_typing(self, is_typing: bool) -> bool: ...

    async def unsubscribe(self) -> None: ...


def decode_channel_event(conversation_id: str, payload: Any) -> ChannelEvent | None:
    """Translate a tagged channel payload; unknown tags decode to None.

    Raises KeyError or ValueError for a recognised tag with a broken body.
    """
    if not isinstance(payload, dict):
        return None
    kind = payload.get("type")
    if kind == ChannelEventType.CONNECTION_CONFIRMED:
        return ConnectionConfirmed(conversation_id=conversation_id, data=payload)
    if kind == ChannelEventType.NEW_MESSAGE:
        return NewMessage(message=parse_message(payload["message"], conversation_id))
    if kind == ChannelEventType.USER_TYPING:
        return PeerTyping(
            conversation_id=conversation_id,
            user_id=str(payload["user_id"]),
            is_typing=bool(payload.get("is_typing")),
        )
    if kind == ChannelEventType.MESSAGE_SENT:
        return MessageSentAck(message=parse_message(payload["message"], conversation_id))
    if kind == ChannelEventType.ERROR:
        return ChannelFailure(
            conversation_id=conversation_id,
            detail=str(payload.get("error") or "unknown error"),
        )
    return None


class ChannelSubscription:
    """Binds the transport to one conversation and decodes its events.

    Never mutates message state itself; every decoded event goes to the
    handlers. Rejection is terminal.
    """

    def __init__(
        self,
        transport: MessageTransport,
        conversation_id: str,
        identifier: str,
        handlers: SubscriptionHandlers,
        *,
        setup_delay: float,
        sleep: Sleep,
    ) -> None:
        self.conversation_id = conversation_id
        self.identifier = identifier
        self._transport = transport
        self._handlers = handlers
        self._setup_delay = setup_delay
        self._timers = Timers(f"subscription:{conversation_id}", sleep)
        self._state = SubscriptionState.PENDING
        self._ready = False
        self._closed = False

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def ready(self) -> bool:
        """True once the setup delay elapsed and registration is allowed."""
        return self._ready and not self._closed and self._state != SubscriptionState.REJECTED

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def is_connected(self) -> bool:
        return (
            not self._closed
            and self._state == SubscriptionState.CONFIRMED
            and self._transport.is_connected
        )

    def schedule_setup(self) -> None:
        self._timers.schedule("setup", self._setup_delay, self._setup)

    async def _setup(self) -> None:
        if self._closed or self._state == SubscriptionState.REJECTED:
            return
        self._ready = True
        await self._transport.register_subscription(self)

    async def send(self, payload: dict[str, Any]) -> bool:
        if not self.is_connected:
            return False
        return await self._transport.send_to_channel(self, payload)

    async def send_message(self, outgoing: OutgoingMessage) -> bool:
        return await self.send(send_message_payload(outgoing))

    async def send_typing(self, is_typing: bool) -> bool:
        return await self.send(typing_payload(is_typing))

    async def unsubscribe(self) -> None:
        if self._closed:
            return
        self.teardown()
        await self._transport.release_subscription(self)

    def teardown(self) -> None:
        """Detach synchronously; no handler fires afterwards."""
        self._closed = True
        self._timers.cancel_all()

    # Transport callbacks

    def handle_confirmed(self) -> None:
        if self._closed or self._state == SubscriptionState.REJECTED:
            return
        self._state = SubscriptionState.CONFIRMED
        logger.debug("Subscription confirmed for conversation %s", self.conversation_id)
        self._call(self._handlers.on_connected)

    def handle_rejected(self) -> None:
        if self._closed or self._state == SubscriptionState.REJECTED:
            return
        self._state = SubscriptionState.REJECTED
        self._timers.cancel_all()
        logger.warning("Subscription rejected for conversation %s", self.conversation_id)
        self._call(
            self._handlers.on_rejected,
            SubscriptionRejected(conversation_id=self.conversation_id),
        )

    def handle_transport_down(self) -> None:
        if self._closed or self._state == SubscriptionState.REJECTED:
            return
        was_confirmed = self._state == SubscriptionState.CONFIRMED
        self._state = SubscriptionState.PENDING
        if was_confirmed:
            self._call(self._handlers.on_disconnected)

    def handle_payload(self, payload: Any) -> None:
        if self._closed:
            return
        try:
            event = decode_channel_event(self.conversation_id, payload)
        except (KeyError, ValueError):
            logger.warning("Undecodable payload on conversation %s", self.conversation_id, exc_info=True)
            self._report(ChannelFailure(self.conversation_id, "Error processing message"))
            return
        if event is None:
            logger.debug("Ignoring payload on conversation %s: %r", self.conversation_id, payload)
            return
        self._route(event)

    def _route(self, event: ChannelEvent) -> None:
        handlers = self._handlers
        if isinstance(event, ConnectionConfirmed):
            if self._state == SubscriptionState.PENDING:
                self._state = SubscriptionState.CONFIRMED
            self._call(handlers.on_connection_confirmed, event)
        elif isinstance(event, NewMessage):
            self._call(handlers.on_new_message, event.message)
        elif isinstance(event, PeerTyping):
            self._call(handlers.on_typing, event)
        elif isinstance(event, MessageSentAck):
            self._call(handlers.on_message_sent, event.message)
        elif isinstance(event, ChannelFailure):
            self._report(event)

    def _report(self, failure: ChannelFailure) -> None:
        handler = self._handlers.on_error
        if handler is None:
            return
        try:
            handler(failure)
        except Exception:
            logger.exception("on_error handler failed for conversation %s", self.conversation_id)

    def _call(self, handler: Callable[..., None] | None, *args: Any) -> None:
        if handler is None:
            return
        try:
            handler(*args)
        except Exception:
            logger.exception("Subscription handler failed for conversation %s", self.conversation_id)
            self._report(ChannelFailure(self.conversation_id, "Error processing message"))


class NullSubscription:
    """Stand-in used when no live channel exists; callers poll instead."""

    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id

    @property
    def state(self) -> SubscriptionState:
        return SubscriptionState.PENDING

    @property
    def is_connected(self) -> bool:
        return False

    async def send(self, payload: dict[str, Any]) -> bool:
        return False

    async def send_message(self, outgoing: OutgoingMessage) -> bool:
        return False

    async def send_typing(self, is_typing: bool) -> bool:
        return False

    async def unsubscribe(self) -> None:
        return None
