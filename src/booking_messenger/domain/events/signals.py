"""In-process signals that keep the unread counter in step with the stores."""
from __future__ import annotations

from dataclasses import dataclass

from booking_messenger.domain.entities.message import Message


@dataclass(frozen=True, slots=True)
class NewMessageArrived:
    conversation_id: str
    message: Message


@dataclass(frozen=True, slots=True)
class MessageSent:
    conversation_id: str
    message: Message


@dataclass(frozen=True, slots=True)
class MessageRead:
    conversation_id: str
    message_id: str
    count: int = 1


@dataclass(frozen=True, slots=True)
class ConversationOpened:
    conversation_id: str


Signal = NewMessageArrived | MessageSent | MessageRead | ConversationOpened

SIGNAL_NAMES: dict[type, str] = {
    NewMessageArrived: "new_message_arrived",
    MessageSent: "message_sent",
    MessageRead: "message_read",
    ConversationOpened: "conversation_opened",
}
