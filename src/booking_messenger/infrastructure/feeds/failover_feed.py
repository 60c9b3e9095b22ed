from __future__ import annotations

import logging

from booking_messenger.application.dto.message import OutgoingMessage
from booking_messenger.application.ports.feed import FeedSink
from booking_messenger.domain.entities.message import Message
from booking_messenger.infrastructure.feeds.live_feed import LiveFeed
from booking_messenger.infrastructure.feeds.poll_feed import PollFeed

logger = logging.getLogger(__name__)


class FailoverFeed:
    """Push while the live subscription is confirmed, poll while it is not."""

    def __init__(self, live: LiveFeed, poll: PollFeed) -> None:
        self.live = live
        self.poll = poll
        self._was_live = False
        live.add_status_listener(self._on_live_status)

    @property
    def is_live(self) -> bool:
        return self.live.is_connected

    async def start(self, sink: FeedSink) -> None:
        await self.live.start(sink)
        await self.poll.start(sink)

    async def stop(self) -> None:
        await self.live.stop()
        await self.poll.stop()

    async def send(self, outgoing: OutgoingMessage) -> Message:
        if self.live.is_connected:
            confirmed = await self.live.try_send(outgoing)
            if confirmed is not None:
                return confirmed
            logger.info("Live channel refused message; falling back to REST")
        return await self.poll.send(outgoing)

    def _on_live_status(self) -> None:
        is_live = self.live.is_connected
        if is_live and not self._was_live:
            # catch up on anything missed while the channel was down
            self.poll.refresh_soon()
        self._was_live = is_live
