"""Entrypoint: python -m booking_messenger <booking_id>

Tails one booking conversation. The session token is read from the
MESSENGER_TOKEN environment variable.
"""
from __future__ import annotations

import asyncio
import logging
import os
import sys
from datetime import datetime, timezone

from booking_messenger.config import settings
from booking_messenger.domain.entities.message import Message
from booking_messenger.infrastructure.auth.token_session import TokenSessionProvider
from booking_messenger.services.formatting import format_message_time
from booking_messenger.services.messaging_session import MessagingSession

logger = logging.getLogger(__name__)


def _render(message: Message) -> str:
    stamp = format_message_time(message.created_at, datetime.now(timezone.utc))
    marker = " (sending)" if message.is_pending else ""
    return f"[{stamp}] {message.sender.name}: {message.body}{marker}"


async def run_tail(booking_id: str, token: str) -> None:
    provider = TokenSessionProvider(settings)
    session = provider.login(token)
    messaging = MessagingSession.from_settings(session, settings)
    await messaging.start()

    shown: set[str] = set()

    def _print_new(messages: list[Message]) -> None:
        for message in messages:
            if message.id not in shown:
                shown.add(message.id)
                print(_render(message), flush=True)

    try:
        room = await messaging.open_conversation(booking_id)
        _print_new(room.messages)
        room.store.add_listener(_print_new)
        messaging.unread.add_listener(lambda n: logger.info("Unread messages: %d", n))
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    finally:
        await messaging.close()
        provider.logout()


def main() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    token = os.environ.get("MESSENGER_TOKEN")
    if len(sys.argv) != 2 or not token:
        print("usage: MESSENGER_TOKEN=... python -m booking_messenger <booking_id>", file=sys.stderr)
        sys.exit(2)
    try:
        asyncio.run(run_tail(sys.argv[1], token))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
