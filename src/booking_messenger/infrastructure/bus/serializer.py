from __future__ import annotations

import json
from dataclasses import asdict
from datetime import datetime
from typing import Any

from booking_messenger.domain.events.signals import (
    SIGNAL_NAMES,
    ConversationOpened,
    MessageRead,
    Signal,
)


class _Encoder(json.JSONEncoder):
    def default(self, o: object) -> Any:
        if isinstance(o, datetime):
            return o.isoformat()
        return super().default(o)


# Only signals that carry no message body travel between processes.
_DECODERS: dict[str, type] = {
    SIGNAL_NAMES[MessageRead]: MessageRead,
    SIGNAL_NAMES[ConversationOpened]: ConversationOpened,
}


def serialize_signal(origin: str, signal: Signal) -> str:
    envelope = {
        "event": SIGNAL_NAMES[type(signal)],
        "origin": origin,
        "data": asdict(signal),
    }
    return json.dumps(envelope, cls=_Encoder)


def deserialize_signal(raw: str | bytes) -> tuple[str, Signal | None]:
    """Return ``(origin, signal)``; the signal is None for kinds not relayed."""
    data = json.loads(raw)
    signal_type = _DECODERS.get(data["event"])
    if signal_type is None:
        return data.get("origin", ""), None
    return data.get("origin", ""), signal_type(**data["data"])
