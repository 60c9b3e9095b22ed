from __future__ import annotations

from typing import Protocol


class LiveChannelError(Exception):
    """The push socket could not be opened, or closed while in use."""


class LiveConnection(Protocol):
    @property
    def is_open(self) -> bool: ...

    async def recv(self) -> str: ...

    async def send(self, raw: str) -> None: ...

    async def close(self) -> None: ...


class LiveConnector(Protocol):
    """Capability to open a push channel; absent when the environment has none."""

    async def open(self, url: str) -> LiveConnection: ...
