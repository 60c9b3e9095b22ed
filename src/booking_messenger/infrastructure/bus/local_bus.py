"""In-process publish/subscribe for messaging signals."""
from __future__ import annotations

import logging
from typing import Callable

from booking_messenger.application.ports.bus import SignalHandler
from booking_messenger.domain.events.signals import Signal

logger = logging.getLogger(__name__)


class LocalSignalBus:
    """Synchronous observer list; handlers run in subscription order."""

    def __init__(self) -> None:
        self._handlers: list[SignalHandler] = []

    def subscribe(self, handler: SignalHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    def publish(self, signal: Signal) -> None:
        for handler in list(self._handlers):
            try:
                handler(signal)
            except Exception:
                logger.exception("Signal handler failed for %s", type(signal).__name__)

    def clear(self) -> None:
        self._handlers.clear()
