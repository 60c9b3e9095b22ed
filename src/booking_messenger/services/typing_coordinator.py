"""Typing indicators for one conversation, both directions."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from booking_messenger.application.ports.clock import Clock, SystemClock
from booking_messenger.config import Settings, settings
from booking_messenger.infrastructure.timers import Sleep, Timers
from booking_messenger.services.formatting import typing_text

logger = logging.getLogger(__name__)

SendTyping = Callable[[bool], Awaitable[bool]]
PeersListener = Callable[[frozenset[str]], None]

IDLE_KEY = "local-idle"


class TypingCoordinator:
    """Tracks which peers are typing and throttles our own typing signal.

    A peer counts as typing while its latest signal was a start received
    less than the expiry window ago. Deadlines are kept alongside the
    timers, so the set is correct even before an expiry timer runs.
    """

    def __init__(
        self,
        self_id: str | None,
        send_signal: SendTyping,
        *,
        cfg: Settings = settings,
        clock: Clock | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._self_id = self_id
        self._send_signal = send_signal
        self._cfg = cfg
        self._clock = clock or SystemClock()
        self._timers = Timers("typing", sleep=sleep)
        self._deadlines: dict[str, float] = {}
        self._listeners: list[PeersListener] = []
        self._local_typing = False
        self._last_sent: float | None = None

    @property
    def typing_peers(self) -> frozenset[str]:
        now = self._clock.monotonic()
        return frozenset(p for p, deadline in self._deadlines.items() if deadline > now)

    @property
    def text(self) -> str:
        return typing_text(len(self.typing_peers))

    @property
    def is_local_typing(self) -> bool:
        return self._local_typing

    def add_listener(self, listener: PeersListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def on_peer_typing(self, peer_id: str, is_typing: bool) -> None:
        if peer_id == self._self_id:
            return
        key = f"peer:{peer_id}"
        if is_typing:
            self._deadlines[peer_id] = self._clock.monotonic() + self._cfg.TYPING_PEER_EXPIRY_SECONDS
            self._timers.schedule(
                key, self._cfg.TYPING_PEER_EXPIRY_SECONDS, lambda: self._expire(peer_id),
            )
            self._notify()
        elif peer_id in self._deadlines:
            self._timers.cancel(key)
            del self._deadlines[peer_id]
            self._notify()

    async def set_local_typing(self, is_typing: bool) -> None:
        """Report a keystroke (True) or an explicit stop (False)."""
        if not is_typing:
            self._timers.cancel(IDLE_KEY)
            await self._stop_local()
            return
        now = self._clock.monotonic()
        stale = self._last_sent is None or now - self._last_sent >= self._cfg.TYPING_REFRESH_SECONDS
        if not self._local_typing or stale:
            self._local_typing = True
            self._last_sent = now
            await self._send(True)
        self._timers.schedule(IDLE_KEY, self._cfg.TYPING_IDLE_SECONDS, self._stop_local)

    def clear(self) -> None:
        self._timers.cancel_all()
        self._local_typing = False
        self._last_sent = None
        had_peers = bool(self._deadlines)
        self._deadlines.clear()
        if had_peers:
            self._notify()

    async def _stop_local(self) -> None:
        if not self._local_typing:
            return
        self._local_typing = False
        self._last_sent = None
        await self._send(False)

    async def _send(self, is_typing: bool) -> None:
        if not await self._send_signal(is_typing):
            logger.debug("Typing signal %s not delivered", is_typing)

    def _expire(self, peer_id: str) -> None:
        deadline = self._deadlines.get(peer_id)
        if deadline is None:
            return
        remaining = deadline - self._clock.monotonic()
        if remaining > 0:
            self._timers.schedule(f"peer:{peer_id}", remaining, lambda: self._expire(peer_id))
            return
        del self._deadlines[peer_id]
        self._notify()

    def _notify(self) -> None:
        peers = self.typing_peers
        for listener in list(self._listeners):
            try:
                listener(peers)
            except Exception:
                logger.exception("Typing listener failed")
