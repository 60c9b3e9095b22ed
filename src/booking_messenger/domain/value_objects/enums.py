from __future__ import annotations

from enum import StrEnum


class BookingStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MessageType(StrEnum):
    TEXT = "text"
    IMAGE = "image"


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    REJECTED = "rejected"
    ERRORED = "errored"


class SubscriptionState(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class ChannelEventType(StrEnum):
    """Tags of payloads pushed on the messages channel."""

    CONNECTION_CONFIRMED = "connection_confirmed"
    NEW_MESSAGE = "new_message"
    USER_TYPING = "user_typing"
    MESSAGE_SENT = "message_sent"
    ERROR = "error"


class ChannelAction(StrEnum):
    SEND_MESSAGE = "send_message"
    MARK_TYPING = "mark_typing"
