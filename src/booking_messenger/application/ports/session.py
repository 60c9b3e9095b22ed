from __future__ import annotations

from typing import Callable, Protocol

from booking_messenger.application.dto.session import Session

SessionListener = Callable[[Session | None], None]


class SessionProvider(Protocol):
    """Current login; listeners get the new session, or None on logout."""

    @property
    def current(self) -> Session | None: ...

    def add_listener(self, listener: SessionListener) -> Callable[[], None]: ...
