"""Decoded events of one conversation's live subscription."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from booking_messenger.domain.entities.message import Message


@dataclass(frozen=True, slots=True)
class ConnectionConfirmed:
    conversation_id: str
    data: dict[str, Any]


@dataclass(frozen=True, slots=True)
class NewMessage:
    message: Message


@dataclass(frozen=True, slots=True)
class PeerTyping:
    conversation_id: str
    user_id: str
    is_typing: bool


@dataclass(frozen=True, slots=True)
class MessageSentAck:
    message: Message


@dataclass(frozen=True, slots=True)
class ChannelFailure:
    conversation_id: str
    detail: str


@dataclass(frozen=True, slots=True)
class SubscriptionRejected:
    conversation_id: str


ChannelEvent = (
    ConnectionConfirmed
    | NewMessage
    | PeerTyping
    | MessageSentAck
    | ChannelFailure
    | SubscriptionRejected
)
