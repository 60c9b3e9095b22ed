from __future__ import annotations

from typing import Protocol

from booking_messenger.application.dto.message import OutgoingMessage
from booking_messenger.application.exceptions import AppError
from booking_messenger.domain.entities.conversation import Conversation
from booking_messenger.domain.entities.message import Message


class FeedSink(Protocol):
    """Receiver of delivered messages; implemented by the message store."""

    def receive_live(self, message: Message) -> None: ...

    def merge_fetched(
        self, messages: list[Message], conversation: Conversation | None = None,
    ) -> None: ...

    def report_error(self, error: AppError | None) -> None: ...


class MessageFeed(Protocol):
    """Delivery strategy behind a store: live push or periodic fetch."""

    async def start(self, sink: FeedSink) -> None: ...

    async def stop(self) -> None: ...

    async def send(self, outgoing: OutgoingMessage) -> Message:
        """Deliver ``outgoing`` and return the server-confirmed message.

        Raises SendError when the message could not be delivered.
        """
        ...
