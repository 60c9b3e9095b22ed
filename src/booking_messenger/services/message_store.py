"""Ordered message cache of one conversation."""
from __future__ import annotations

import logging
from datetime import tzinfo
from typing import Any, Callable
from uuid import uuid4

from booking_messenger.application.dto.message import MessagePage, OutgoingMessage
from booking_messenger.application.dto.session import Session
from booking_messenger.application.exceptions import AppError, FetchError, ValidationError
from booking_messenger.application.ports.api import ApiError, MessageApi
from booking_messenger.application.ports.bus import SignalBus
from booking_messenger.application.ports.clock import Clock, SystemClock
from booking_messenger.application.ports.feed import MessageFeed
from booking_messenger.config import Settings, settings
from booking_messenger.domain.entities import thread
from booking_messenger.domain.entities.conversation import Conversation
from booking_messenger.domain.entities.message import CORRELATION_KEY, Message, Pending
from booking_messenger.domain.events.signals import MessageRead, MessageSent, NewMessageArrived
from booking_messenger.domain.value_objects.enums import MessageType
from booking_messenger.services.formatting import DayGroup, MessageStats, group_by_day, message_stats

logger = logging.getLogger(__name__)

StoreListener = Callable[[list[Message]], None]


class MessageStore:
    """Sole owner and mutator of a conversation's message list.

    Reconciles three sources: the initial bulk fetch, pushed or polled
    deliveries from the feed, and optimistic local sends. Acts as the
    feed's sink, so it never knows which delivery path is active.
    """

    def __init__(
        self,
        conversation_id: str,
        *,
        api: MessageApi,
        feed: MessageFeed,
        session: Session,
        bus: SignalBus,
        cfg: Settings = settings,
        clock: Clock | None = None,
        conversation: Conversation | None = None,
    ) -> None:
        self.conversation_id = conversation_id
        self.conversation = conversation
        self._api = api
        self._feed = feed
        self._session = session
        self._bus = bus
        self._cfg = cfg
        self._clock = clock or SystemClock()
        self._messages: list[Message] = []
        self._listeners: list[StoreListener] = []
        self._loaded = False
        self._started = False
        self._closed = False
        self.is_loading = False
        self.last_error: AppError | None = None

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def add_listener(self, listener: StoreListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        await self._feed.start(self)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._feed.stop()
        self._listeners.clear()

    async def load_initial(self) -> MessagePage:
        self.is_loading = True
        try:
            page = await self._api.fetch_messages(self.conversation_id)
        except ApiError as exc:
            logger.warning("Loading conversation %s failed: %s", self.conversation_id, exc)
            self.last_error = FetchError("Failed to load messages")
            self._notify()
            raise self.last_error from exc
        finally:
            self.is_loading = False
        if not self._closed:
            self._messages = thread.replace_confirmed(self._messages, page.messages)
            if page.conversation is not None:
                self.conversation = page.conversation
            self._loaded = True
            self.last_error = None
            self._notify()
        return page

    # FeedSink

    def receive_live(self, message: Message) -> None:
        if self._closed:
            return
        before = self._messages
        self._messages = thread.insert(before, message)
        if self._messages is before:
            return
        self._announce([message])
        self._notify()

    def merge_fetched(
        self, messages: list[Message], conversation: Conversation | None = None,
    ) -> None:
        if self._closed:
            return
        if conversation is not None:
            self.conversation = conversation
        self._messages, added = thread.merge(self._messages, messages)
        if self._loaded:
            self._announce(added)
        self._loaded = True
        self._notify()

    def report_error(self, error: AppError | None) -> None:
        if self._closed or error is self.last_error:
            return
        self.last_error = error
        self._notify()

    # Commands

    async def send_optimistic(
        self,
        text: str,
        message_type: str = MessageType.TEXT,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        """Show ``text`` immediately, then replace it with the server's copy.

        Raises ValidationError before any I/O, or SendError after rolling
        the placeholder back.
        """
        body = self._validate(text)
        correlation_id = uuid4().hex
        placeholder = Message(
            delivery=Pending(local_id=f"temp-{correlation_id}", correlation_id=correlation_id),
            conversation_id=self.conversation_id,
            sender=self._session.sender,
            body=body,
            type=message_type,
            created_at=self._clock.now(),
            metadata={**(metadata or {}), CORRELATION_KEY: correlation_id},
        )
        self._messages = thread.insert(self._messages, placeholder)
        self._notify()

        outgoing = OutgoingMessage(
            conversation_id=self.conversation_id,
            body=body,
            correlation_id=correlation_id,
            type=message_type,
            metadata=dict(metadata or {}),
        )
        try:
            confirmed = await self._feed.send(outgoing)
        except BaseException:
            self._rollback(correlation_id)
            raise

        if not self._closed:
            self._messages = thread.reconcile(self._messages, correlation_id, confirmed)
            self._notify()
        self._bus.publish(MessageSent(conversation_id=self.conversation_id, message=confirmed))
        return confirmed

    async def mark_read(self, message_id: str) -> bool:
        """Acknowledge ``message_id``; failures are logged, never raised."""
        try:
            await self._api.mark_read(self.conversation_id, message_id)
        except ApiError as exc:
            logger.warning("Marking message %s read failed: %s", message_id, exc)
            return False
        self._bus.publish(MessageRead(conversation_id=self.conversation_id, message_id=message_id))
        return True

    async def search(self, query: str) -> list[Message]:
        if not query.strip():
            raise ValidationError("Search query is required")
        try:
            return await self._api.search_messages(self.conversation_id, query.strip())
        except ApiError as exc:
            raise FetchError(f"Search failed: {exc}") from exc

    # Projections

    def grouped_by_day(self, tz: tzinfo | None = None) -> list[DayGroup]:
        return group_by_day(self._messages, tz)

    def stats(self) -> MessageStats:
        return message_stats(self._messages, self._session.user_id)

    def _validate(self, text: str | None) -> str:
        body = (text or "").strip()
        if not body:
            raise ValidationError("Message cannot be empty")
        if len(body) > self._cfg.MESSAGE_MAX_LENGTH:
            raise ValidationError(
                f"Message cannot exceed {self._cfg.MESSAGE_MAX_LENGTH} characters",
            )
        return body

    def _rollback(self, correlation_id: str) -> None:
        self._messages = thread.discard_correlated(self._messages, correlation_id)
        self._notify()

    def _announce(self, messages: list[Message]) -> None:
        for message in messages:
            self._bus.publish(
                NewMessageArrived(conversation_id=self.conversation_id, message=message),
            )

    def _notify(self) -> None:
        snapshot = list(self._messages)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Store listener failed")
