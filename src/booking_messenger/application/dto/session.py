from __future__ import annotations

from dataclasses import dataclass

from booking_messenger.domain.entities.message import Sender


@dataclass(frozen=True, slots=True)
class Session:
    """Authenticated user identity and the credential that proves it."""

    user_id: str
    token: str
    name: str = "You"
    avatar_url: str | None = None

    @property
    def sender(self) -> Sender:
        return Sender(id=self.user_id, name=self.name, avatar_url=self.avatar_url)
