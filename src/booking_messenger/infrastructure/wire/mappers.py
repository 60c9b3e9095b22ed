from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from booking_messenger.domain.entities.conversation import Conversation
from booking_messenger.domain.entities.message import Confirmed, Message, Sender
from booking_messenger.infrastructure.wire.schemas import (
    BookingPayload,
    MessagePayload,
    SenderPayload,
)


def _aware(ts: datetime | None) -> datetime | None:
    if ts is not None and ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def sender_to_entity(payload: SenderPayload) -> Sender:
    name = " ".join(part for part in (payload.first_name, payload.last_name) if part)
    return Sender(id=str(payload.id), name=name, avatar_url=payload.avatar_url)


def payload_to_entity(payload: MessagePayload, conversation_id: str | None = None) -> Message:
    if conversation_id is None:
        conversation_id = "" if payload.booking_id is None else str(payload.booking_id)
    return Message(
        delivery=Confirmed(server_id=str(payload.id)),
        conversation_id=conversation_id,
        sender=sender_to_entity(payload.sender),
        body=payload.message_text,
        type=payload.message_type,
        created_at=_aware(payload.created_at),  # type: ignore[arg-type]
        read_at=_aware(payload.read_at),
        metadata=dict(payload.metadata or {}),
    )


def parse_message(raw: dict[str, Any], conversation_id: str | None = None) -> Message:
    """Validate a raw message mapping and convert it to an entity."""
    return payload_to_entity(MessagePayload.model_validate(raw), conversation_id)


def booking_to_entity(payload: BookingPayload) -> Conversation:
    return Conversation(id=str(payload.id), status=payload.status, title=payload.title)
