"""Wire shapes of the marketplace messaging API."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from booking_messenger.domain.value_objects.enums import BookingStatus, MessageType


class SenderPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | str
    first_name: str = ""
    last_name: str | None = None
    avatar_url: str | None = None


class MessagePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | str
    booking_id: int | str | None = None
    message_text: str = ""
    message_type: str = MessageType.TEXT
    sender: SenderPayload
    created_at: datetime
    read_at: datetime | None = None
    metadata: dict[str, Any] | None = None


class BookingPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | str
    status: BookingStatus
    title: str | None = None


class MessagesResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    messages: list[MessagePayload] = []
    pagination: dict[str, Any] = {}
    booking: BookingPayload | None = None


class UnreadCountResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    count: int = 0
    success: bool = True


class SendMessageBody(BaseModel):
    message_text: str
    message_type: str = MessageType.TEXT
    metadata: dict[str, Any] = {}


class SendMessageRequest(BaseModel):
    message: SendMessageBody
