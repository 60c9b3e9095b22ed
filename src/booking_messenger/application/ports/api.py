from __future__ import annotations

from typing import Any, Protocol

from booking_messenger.application.dto.message import MessagePage, OutgoingMessage
from booking_messenger.domain.entities.message import Message


class MessageApi(Protocol):
    """Request/response side of the marketplace messaging API."""

    async def fetch_messages(
        self,
        conversation_id: str,
        *,
        params: dict[str, Any] | None = None,
    ) -> MessagePage: ...

    async def send_message(self, outgoing: OutgoingMessage) -> Message: ...

    async def mark_read(self, conversation_id: str, message_id: str) -> None: ...

    async def unread_count(self) -> int | None:
        """Aggregate unread count, or None when the endpoint is unavailable."""
        ...

    async def search_messages(self, conversation_id: str, query: str) -> list[Message]: ...


class ApiError(Exception):
    """Base error for marketplace API failures."""


class ApiAuthError(ApiError):
    """Raised when the API rejects the session token."""


class ApiNotFoundError(ApiError):
    """Raised when the resource or endpoint does not exist."""


class ApiConnectionError(ApiError):
    """Raised when the API cannot be reached."""


class ApiRequestError(ApiError):
    """Raised for other non-success responses or unreadable bodies."""
