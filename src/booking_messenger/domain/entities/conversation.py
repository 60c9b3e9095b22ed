from __future__ import annotations

from dataclasses import dataclass

from booking_messenger.domain.value_objects.enums import BookingStatus


@dataclass(frozen=True, slots=True)
class Conversation:
    """Message thread scoped to one booking."""

    id: str
    status: BookingStatus
    title: str | None = None

    @property
    def accepts_messages(self) -> bool:
        return self.status != BookingStatus.REJECTED
