"""HTTP client for the marketplace messaging endpoints."""
from __future__ import annotations

import logging
from typing import Any, Callable
from uuid import uuid4

import httpx
from pydantic import ValidationError as PydanticValidationError

from booking_messenger.application.dto.message import MessagePage, OutgoingMessage
from booking_messenger.application.ports.api import (
    ApiAuthError,
    ApiConnectionError,
    ApiNotFoundError,
    ApiRequestError,
)
from booking_messenger.config import Settings, settings
from booking_messenger.domain.entities.message import Message
from booking_messenger.infrastructure.wire.mappers import booking_to_entity, payload_to_entity
from booking_messenger.infrastructure.wire.schemas import (
    MessagePayload,
    MessagesResponse,
    SendMessageBody,
    SendMessageRequest,
    UnreadCountResponse,
)

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

TokenGetter = Callable[[], str | None]


class MarketplaceApiClient:
    """Request/response side of messaging, authenticated with the session token."""

    def __init__(
        self,
        token_getter: TokenGetter,
        *,
        cfg: Settings = settings,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._token_getter = token_getter
        self.http = http or httpx.AsyncClient(
            base_url=cfg.API_BASE_URL,
            timeout=httpx.Timeout(cfg.HTTP_TIMEOUT_SECONDS),
            headers={"Accept": "application/json"},
        )

    async def aclose(self) -> None:
        await self.http.aclose()

    async def call(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        headers = {REQUEST_ID_HEADER: uuid4().hex}
        token = self._token_getter()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            response = await self.http.request(
                method, path, params=params, json=json, headers=headers,
            )
        except httpx.TimeoutException as exc:
            raise ApiConnectionError(f"api_timeout: {method} {path}") from exc
        except httpx.HTTPError as exc:
            raise ApiConnectionError(f"api_connection_failed: {exc}") from exc

        logger.debug("%s %s -> %d", method, path, response.status_code)
        if response.status_code in {401, 403}:
            raise ApiAuthError("api_auth_failed")
        if response.status_code == 404:
            raise ApiNotFoundError(f"api_not_found: {path}")
        if response.status_code >= 400:
            raise ApiRequestError(_error_message(response))
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ApiRequestError("api_invalid_json") from exc

    async def fetch_messages(
        self,
        conversation_id: str,
        *,
        params: dict[str, Any] | None = None,
    ) -> MessagePage:
        data = await self.call("GET", f"/bookings/{conversation_id}/messages", params=params)
        try:
            body = MessagesResponse.model_validate(data or {})
        except PydanticValidationError as exc:
            raise ApiRequestError("api_invalid_messages_payload") from exc
        return MessagePage(
            messages=[payload_to_entity(m, conversation_id) for m in body.messages],
            pagination=body.pagination,
            conversation=booking_to_entity(body.booking) if body.booking else None,
        )

    async def send_message(self, outgoing: OutgoingMessage) -> Message:
        request = SendMessageRequest(
            message=SendMessageBody(
                message_text=outgoing.body,
                message_type=outgoing.type,
                metadata=outgoing.wire_metadata(),
            )
        )
        data = await self.call(
            "POST",
            f"/bookings/{outgoing.conversation_id}/messages",
            json=request.model_dump(mode="json"),
        )
        try:
            payload = MessagePayload.model_validate(data)
        except PydanticValidationError as exc:
            raise ApiRequestError("api_invalid_message_payload") from exc
        return payload_to_entity(payload, outgoing.conversation_id)

    async def mark_read(self, conversation_id: str, message_id: str) -> None:
        await self.call(
            "PATCH", f"/bookings/{conversation_id}/messages/{message_id}/mark_read",
        )

    async def unread_count(self) -> int | None:
        try:
            data = await self.call("GET", "/messages/unread_count")
        except (ApiNotFoundError, ApiAuthError):
            logger.info("Unread count endpoint unavailable")
            return None
        try:
            body = UnreadCountResponse.model_validate(data or {})
        except PydanticValidationError as exc:
            raise ApiRequestError("api_invalid_unread_payload") from exc
        if not body.success:
            return None
        return max(body.count, 0)

    async def search_messages(self, conversation_id: str, query: str) -> list[Message]:
        data = await self.call(
            "GET", f"/bookings/{conversation_id}/messages/search", params={"q": query},
        )
        try:
            body = MessagesResponse.model_validate(data or {})
        except PydanticValidationError as exc:
            raise ApiRequestError("api_invalid_messages_payload") from exc
        return [payload_to_entity(m, conversation_id) for m in body.messages]


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return f"api_error_{response.status_code}"
    if isinstance(data, dict):
        for key in ("error", "message"):
            if data.get(key):
                return str(data[key])
        errors = data.get("errors")
        if isinstance(errors, list) and errors:
            return ", ".join(str(e) for e in errors)
    return f"api_error_{response.status_code}"
