from __future__ import annotations

from typing import Callable, Protocol

from booking_messenger.domain.events.signals import Signal

SignalHandler = Callable[[Signal], None]


class SignalBus(Protocol):
    def publish(self, signal: Signal) -> None: ...

    def subscribe(self, handler: SignalHandler) -> Callable[[], None]: ...
