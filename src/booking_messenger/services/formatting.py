"""Read-side projections of a conversation for display."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Iterable

from booking_messenger.domain.entities.message import Message


@dataclass(frozen=True, slots=True)
class DayGroup:
    day: date
    messages: list[Message]


@dataclass(frozen=True, slots=True)
class MessageStats:
    total: int
    unread: int
    last: Message | None


def typing_text(count: int) -> str:
    if count <= 0:
        return ""
    if count == 1:
        return "Someone is typing…"
    return f"{count} people are typing…"


def group_by_day(messages: Iterable[Message], tz: tzinfo | None = None) -> list[DayGroup]:
    """Group already-ordered messages by local calendar day."""
    groups: list[DayGroup] = []
    for message in messages:
        day = message.created_at.astimezone(tz).date()
        if groups and groups[-1].day == day:
            groups[-1].messages.append(message)
        else:
            groups.append(DayGroup(day=day, messages=[message]))
    return groups


def format_message_time(created_at: datetime, now: datetime, tz: tzinfo | None = None) -> str:
    """Time of day within 24h, weekday within a week, month and day beyond."""
    local = created_at.astimezone(tz)
    clock = f"{local.hour % 12 or 12}:{local.minute:02d} {'AM' if local.hour < 12 else 'PM'}"
    age = now - created_at
    if age < timedelta(hours=24):
        return clock
    if age < timedelta(days=7):
        return f"{local:%a} {clock}"
    return f"{local:%b} {local.day}, {clock}"


def message_stats(messages: list[Message], self_id: str | None = None) -> MessageStats:
    unread = sum(
        1 for m in messages
        if m.read_at is None and not m.is_pending and m.sender.id != self_id
    )
    return MessageStats(
        total=len(messages),
        unread=unread,
        last=messages[-1] if messages else None,
    )
