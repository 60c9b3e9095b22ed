"""Builds a messaging session on login and disposes of it on logout."""
from __future__ import annotations

import asyncio
import logging
from typing import Callable

from booking_messenger.application.dto.session import Session
from booking_messenger.application.ports.session import SessionProvider
from booking_messenger.services.messaging_session import MessagingSession

logger = logging.getLogger(__name__)

SessionFactory = Callable[[Session], MessagingSession]


class MessagingLifecycle:
    """Keeps ``current`` in step with the session provider.

    Provider callbacks are synchronous, so start and close run as tasks;
    ``settle`` waits for the latest one.
    """

    def __init__(
        self,
        provider: SessionProvider,
        factory: SessionFactory = MessagingSession.from_settings,
    ) -> None:
        self._provider = provider
        self._factory = factory
        self._remove_listener: Callable[[], None] | None = None
        self._chain: asyncio.Task[None] | None = None
        self.current: MessagingSession | None = None

    def bind(self) -> None:
        if self._remove_listener is not None:
            return
        self._remove_listener = self._provider.add_listener(self._on_session)
        if self._provider.current is not None:
            self._on_session(self._provider.current)

    async def settle(self) -> None:
        while self._chain is not None and not self._chain.done():
            await asyncio.shield(self._chain)

    async def aclose(self) -> None:
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None
        self._on_session(None)
        await self.settle()

    def _on_session(self, session: Session | None) -> None:
        previous, self.current = self.current, None
        if session is not None:
            self.current = self._factory(session)
        self._chain = asyncio.get_running_loop().create_task(
            self._switch(self._chain, previous, self.current),
            name="messaging-lifecycle",
        )

    async def _switch(
        self,
        before: asyncio.Task[None] | None,
        previous: MessagingSession | None,
        upcoming: MessagingSession | None,
    ) -> None:
        # transitions run strictly in the order the provider reported them
        if before is not None:
            await asyncio.gather(before, return_exceptions=True)
        if previous is not None:
            try:
                await previous.close()
            except Exception:
                logger.exception("Closing messaging session failed")
        if upcoming is not None and upcoming is self.current:
            await upcoming.start()
