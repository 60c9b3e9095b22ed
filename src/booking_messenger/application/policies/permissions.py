from __future__ import annotations

from booking_messenger.application.exceptions import ForbiddenError
from booking_messenger.domain.entities.conversation import Conversation
from booking_messenger.domain.value_objects.enums import BookingStatus


def messaging_disabled_reason(conversation: Conversation | None) -> str | None:
    """Why sending is refused for ``conversation``, or None when it is allowed."""
    if conversation is None:
        return "Booking not found"
    if conversation.status == BookingStatus.REJECTED:
        return "Messaging disabled for rejected bookings"
    if not conversation.accepts_messages:
        return "Messaging not available"
    return None


def assert_can_send(conversation: Conversation | None) -> Conversation:
    """Raise if messages may not be sent into ``conversation``."""
    reason = messaging_disabled_reason(conversation)
    if reason is not None or conversation is None:
        raise ForbiddenError(reason or "Booking not found")
    return conversation
