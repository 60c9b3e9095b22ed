from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

# Metadata key carrying the client-side correlation id end-to-end.
CORRELATION_KEY = "client_msg_id"


@dataclass(frozen=True, slots=True)
class Sender:
    id: str
    name: str
    avatar_url: str | None = None


@dataclass(frozen=True, slots=True)
class Pending:
    """Optimistic placeholder awaiting server confirmation."""

    local_id: str
    correlation_id: str


@dataclass(frozen=True, slots=True)
class Confirmed:
    server_id: str


Delivery = Pending | Confirmed


@dataclass(frozen=True, slots=True)
class Message:
    delivery: Delivery
    conversation_id: str
    sender: Sender
    body: str
    type: str
    created_at: datetime
    read_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        if isinstance(self.delivery, Pending):
            return self.delivery.local_id
        return self.delivery.server_id

    @property
    def is_pending(self) -> bool:
        return isinstance(self.delivery, Pending)

    @property
    def correlation_id(self) -> str | None:
        if isinstance(self.delivery, Pending):
            return self.delivery.correlation_id
        value = self.metadata.get(CORRELATION_KEY)
        return str(value) if value else None
