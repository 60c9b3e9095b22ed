"""Pure transitions over a conversation's ordered message sequence.

Every function returns a new list sorted by creation time and unique by id;
inputs are never mutated.
"""
from __future__ import annotations

from collections.abc import Iterable

from booking_messenger.domain.entities.message import Message


def ordered(messages: Iterable[Message]) -> list[Message]:
    # sorted() is stable, so equal timestamps keep arrival order
    return sorted(messages, key=lambda m: m.created_at)


def insert(messages: list[Message], message: Message) -> list[Message]:
    """Add ``message`` unless its id is already present.

    A confirmed message whose correlation id matches a pending placeholder
    replaces that placeholder.
    """
    if any(m.id == message.id for m in messages):
        return messages
    if not message.is_pending and message.correlation_id:
        messages = discard_correlated(messages, message.correlation_id)
    return ordered([*messages, message])


def reconcile(
    messages: list[Message],
    correlation_id: str,
    confirmed: Message,
) -> list[Message]:
    """Swap the placeholder for ``correlation_id`` with its confirmed message."""
    remaining = discard_correlated(messages, correlation_id)
    if any(m.id == confirmed.id for m in remaining):
        return remaining
    return ordered([*remaining, confirmed])


def discard_correlated(messages: list[Message], correlation_id: str) -> list[Message]:
    return [
        m for m in messages
        if not (m.is_pending and m.correlation_id == correlation_id)
    ]


def replace_confirmed(messages: list[Message], fetched: Iterable[Message]) -> list[Message]:
    """Replace every confirmed message with ``fetched``; keep in-flight placeholders."""
    result: list[Message] = []
    for message in fetched:
        result = insert(result, message)
    for message in messages:
        if message.is_pending and not _is_echoed(message, result):
            result = insert(result, message)
    return result


def merge(messages: list[Message], fetched: Iterable[Message]) -> tuple[list[Message], list[Message]]:
    """Union ``fetched`` into ``messages``; fetched copies win on id clashes.

    Returns ``(merged, added)`` where ``added`` lists messages whose id was
    not known before.
    """
    known = {m.id for m in messages}
    by_id = {m.id: m for m in messages}
    added: list[Message] = []
    for message in fetched:
        if message.id not in known:
            added.append(message)
        by_id[message.id] = message
    result: list[Message] = []
    for message in by_id.values():
        if message.is_pending:
            continue
        result.append(message)
    result = ordered(result)
    for message in messages:
        if message.is_pending and not _is_echoed(message, result):
            result = insert(result, message)
    return result, added


def _is_echoed(placeholder: Message, messages: list[Message]) -> bool:
    return any(
        not m.is_pending and m.correlation_id == placeholder.correlation_id
        for m in messages
    )
