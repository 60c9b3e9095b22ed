"""Session-wide unread counter: server baseline plus local deltas."""
from __future__ import annotations

import asyncio
import logging
from typing import Callable

from booking_messenger.application.ports.api import ApiError, MessageApi
from booking_messenger.application.ports.bus import SignalBus
from booking_messenger.config import Settings, settings
from booking_messenger.domain.entities.message import Message
from booking_messenger.domain.events.signals import (
    ConversationOpened,
    MessageRead,
    MessageSent,
    NewMessageArrived,
    Signal,
)
from booking_messenger.infrastructure.timers import Sleep, Timers

logger = logging.getLogger(__name__)

CountListener = Callable[[int], None]

REFRESH_KEY = "refresh"


class UnreadAggregator:
    """How many unread messages the signed-in user has.

    Each successful poll overwrites the baseline; signals from the message
    stores nudge it in between. A missing endpoint is a soft condition:
    the counter stays usable and the poll slows down.
    """

    def __init__(
        self,
        api: MessageApi,
        bus: SignalBus,
        self_id: str | None,
        *,
        cfg: Settings = settings,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._api = api
        self._bus = bus
        self._self_id = self_id
        self._cfg = cfg
        self._sleep = sleep
        self._timers = Timers("unread", sleep=sleep)
        self._listeners: list[CountListener] = []
        self._unsubscribe: Callable[[], None] | None = None
        self._task: asyncio.Task[None] | None = None
        self.available = True
        self.count = 0

    @property
    def poll_interval(self) -> float:
        if self.available:
            return self._cfg.UNREAD_POLL_SECONDS
        return self._cfg.UNREAD_UNAVAILABLE_POLL_SECONDS

    def add_listener(self, listener: CountListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    async def start(self) -> None:
        if self._task is not None:
            return
        self._unsubscribe = self._bus.subscribe(self.handle_signal)
        self._task = asyncio.create_task(self._loop(), name="unread-poll")

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._timers.cancel_all()
        task, self._task = self._task, None
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._set(0)
        self._listeners.clear()

    async def refresh(self) -> int:
        try:
            count = await self._api.unread_count()
        except ApiError as exc:
            logger.warning("Unread count poll failed: %s", exc)
            return self.count
        if count is None:
            if self.available:
                logger.info("Unread count unavailable; falling back to 0")
            self.available = False
            self._set(0)
        else:
            self.available = True
            self._set(count)
        return self.count

    def on_inbound_message(self, message: Message, self_id: str | None = None) -> None:
        me = self_id if self_id is not None else self._self_id
        if message.sender.id != me:
            self._set(self.count + 1)

    def on_conversation_opened(self) -> None:
        # coarse: treats every unread message in every conversation as read
        self._set(0)

    def on_read(self, n: int = 1) -> None:
        self._set(self.count - n)

    def handle_signal(self, signal: Signal) -> None:
        if isinstance(signal, NewMessageArrived):
            self.on_inbound_message(signal.message)
            self._refresh_soon()
        elif isinstance(signal, MessageSent):
            self._refresh_soon()
        elif isinstance(signal, MessageRead):
            self.on_read(signal.count)
            self._refresh_soon()
        elif isinstance(signal, ConversationOpened):
            self.on_conversation_opened()

    def _refresh_soon(self) -> None:
        if not self.available or self._task is None:
            return
        self._timers.schedule(REFRESH_KEY, self._cfg.UNREAD_REFRESH_DELAY_SECONDS, self.refresh)

    def _set(self, count: int) -> None:
        count = max(count, 0)
        if count == self.count:
            return
        self.count = count
        for listener in list(self._listeners):
            try:
                listener(count)
            except Exception:
                logger.exception("Unread listener failed")

    async def _loop(self) -> None:
        while True:
            try:
                await self.refresh()
            except Exception:
                logger.exception("Unread poll loop error")
            await self._sleep(self.poll_interval)
