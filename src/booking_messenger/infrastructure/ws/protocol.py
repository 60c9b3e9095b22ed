"""ActionCable JSON envelopes carried on the live channel."""
from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel

from booking_messenger.application.dto.message import OutgoingMessage
from booking_messenger.domain.value_objects.enums import ChannelAction

SUBPROTOCOL = "actioncable-v1-json"
MESSAGES_CHANNEL = "MessagesChannel"


class CableCommand(BaseModel):
    """Client → Server."""

    command: str  # subscribe | unsubscribe | message
    identifier: str
    data: str | None = None


class CableFrame(BaseModel):
    """Server → Client."""

    type: str | None = None  # welcome | ping | disconnect | confirm_subscription | reject_subscription
    identifier: str | None = None
    message: Any = None
    reason: str | None = None
    reconnect: bool | None = None


def channel_identifier(conversation_id: str) -> str:
    return json.dumps({"channel": MESSAGES_CHANNEL, "booking_id": conversation_id})


def subscribe_command(identifier: str) -> CableCommand:
    return CableCommand(command="subscribe", identifier=identifier)


def unsubscribe_command(identifier: str) -> CableCommand:
    return CableCommand(command="unsubscribe", identifier=identifier)


def message_command(identifier: str, payload: dict[str, Any]) -> CableCommand:
    return CableCommand(command="message", identifier=identifier, data=json.dumps(payload))


def send_message_payload(outgoing: OutgoingMessage) -> dict[str, Any]:
    return {
        "action": ChannelAction.SEND_MESSAGE,
        "message_text": outgoing.body,
        "message_type": outgoing.type,
        "metadata": outgoing.wire_metadata(),
    }


def typing_payload(is_typing: bool) -> dict[str, Any]:
    return {"action": ChannelAction.MARK_TYPING, "is_typing": is_typing}
