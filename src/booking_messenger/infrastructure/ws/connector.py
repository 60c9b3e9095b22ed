"""``websockets`` implementation of the live-channel connector."""
from __future__ import annotations

import logging

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import InvalidHandshake, WebSocketException
from websockets.protocol import State

from booking_messenger.application.ports.connector import LiveChannelError
from booking_messenger.infrastructure.ws.protocol import SUBPROTOCOL

logger = logging.getLogger(__name__)


class WebsocketsConnection:
    def __init__(self, ws: ClientConnection) -> None:
        self._ws = ws

    @property
    def is_open(self) -> bool:
        return self._ws.state is State.OPEN

    async def recv(self) -> str:
        try:
            raw = await self._ws.recv()
        except WebSocketException as exc:
            raise LiveChannelError(str(exc)) from exc
        if isinstance(raw, bytes):
            return raw.decode("utf-8")
        return raw

    async def send(self, raw: str) -> None:
        try:
            await self._ws.send(raw)
        except WebSocketException as exc:
            raise LiveChannelError(str(exc)) from exc

    async def close(self) -> None:
        await self._ws.close()


class WebsocketsConnector:
    """Opens ActionCable sockets; the transport owns timeouts and retries."""

    def __init__(self, *, ping_interval: float | None = 20.0) -> None:
        self._ping_interval = ping_interval

    async def open(self, url: str) -> WebsocketsConnection:
        try:
            ws = await connect(
                url,
                subprotocols=[SUBPROTOCOL],  # type: ignore[list-item]
                open_timeout=None,
                ping_interval=self._ping_interval,
            )
        except InvalidHandshake as exc:
            raise LiveChannelError(f"handshake failed: {exc}") from exc
        logger.debug("WS opened: %s", url.split("?", 1)[0])
        return WebsocketsConnection(ws)
