"""Request/response delivery: periodic refetch plus REST send."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Callable

from booking_messenger.application.dto.message import OutgoingMessage
from booking_messenger.application.exceptions import FetchError, SendError
from booking_messenger.application.ports.api import ApiError, MessageApi
from booking_messenger.application.ports.feed import FeedSink
from booking_messenger.config import Settings, settings
from booking_messenger.domain.entities.message import Message

logger = logging.getLogger(__name__)


class PollFeed:
    """Refetches on an interval that depends on focus.

    ``should_poll`` gates each tick, so an attached live feed can silence
    polling while it is connected.
    """

    def __init__(
        self,
        api: MessageApi,
        conversation_id: str,
        *,
        cfg: Settings = settings,
        should_poll: Callable[[], bool] | None = None,
    ) -> None:
        self._api = api
        self._conversation_id = conversation_id
        self._cfg = cfg
        self._should_poll = should_poll or (lambda: True)
        self._sink: FeedSink | None = None
        self._task: asyncio.Task[None] | None = None
        self._wake = asyncio.Event()
        self._forced = False
        self.focused = True

    @property
    def interval(self) -> float:
        if self.focused:
            return self._cfg.POLL_FOCUSED_SECONDS
        return self._cfg.POLL_BACKGROUND_SECONDS

    def set_focused(self, focused: bool) -> None:
        changed = focused != self.focused
        self.focused = focused
        if changed and focused:
            self._wake.set()

    def refresh_soon(self) -> None:
        """Fetch on the next loop turn even if polling is gated off."""
        self._forced = True
        self._wake.set()

    async def start(self, sink: FeedSink) -> None:
        self._sink = sink
        self._task = asyncio.create_task(
            self._loop(), name=f"poll-feed-{self._conversation_id}",
        )

    async def stop(self) -> None:
        self._sink = None
        task, self._task = self._task, None
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def refresh(self) -> None:
        sink = self._sink
        if sink is None:
            return
        try:
            page = await self._api.fetch_messages(self._conversation_id)
        except ApiError as exc:
            logger.warning("Polling conversation %s failed: %s", self._conversation_id, exc)
            sink.report_error(FetchError(f"Failed to load messages: {exc}"))
            return
        if self._sink is not sink:
            return
        sink.merge_fetched(page.messages, page.conversation)
        sink.report_error(None)

    async def send(self, outgoing: OutgoingMessage) -> Message:
        try:
            return await self._api.send_message(outgoing)
        except ApiError as exc:
            raise SendError(f"Failed to send message: {exc}") from exc

    async def _loop(self) -> None:
        while True:
            self._wake.clear()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval)
            forced, self._forced = self._forced, False
            if not (forced or self._should_poll()):
                continue
            try:
                await self.refresh()
            except Exception:
                logger.exception("Poll loop error")
