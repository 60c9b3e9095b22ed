from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from booking_messenger.domain.entities.conversation import Conversation
from booking_messenger.domain.entities.message import CORRELATION_KEY, Message
from booking_messenger.domain.value_objects.enums import MessageType


@dataclass(frozen=True, slots=True)
class OutgoingMessage:
    conversation_id: str
    body: str
    correlation_id: str
    type: str = MessageType.TEXT
    metadata: dict[str, Any] = field(default_factory=dict)

    def wire_metadata(self) -> dict[str, Any]:
        return {**self.metadata, CORRELATION_KEY: self.correlation_id}


@dataclass(frozen=True, slots=True)
class MessagePage:
    messages: list[Message]
    pagination: dict[str, Any] = field(default_factory=dict)
    conversation: Conversation | None = None
