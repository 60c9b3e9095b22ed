from __future__ import annotations

import json

import httpx
import pytest
import respx

from booking_messenger.application.dto.message import OutgoingMessage
from booking_messenger.application.ports.api import (
    ApiAuthError,
    ApiConnectionError,
    ApiNotFoundError,
    ApiRequestError,
)
from booking_messenger.domain.value_objects.enums import BookingStatus
from booking_messenger.infrastructure.http.client import MarketplaceApiClient
from tests.conftest import make_settings, message_payload

BASE = "http://api.test/api/v1"


def _client(token: str | None = "tok") -> MarketplaceApiClient:
    return MarketplaceApiClient(lambda: token, cfg=make_settings())


@pytest.mark.asyncio
@respx.mock
async def test_fetch_messages_maps_page():
    client = _client()
    route = respx.get(f"{BASE}/bookings/1/messages").respond(
        200,
        json={
            "messages": [message_payload(2, seconds=5), message_payload(1)],
            "pagination": {"current_page": 1, "total_pages": 1},
            "booking": {"id": 1, "status": "approved", "title": "Studio"},
        },
    )

    page = await client.fetch_messages("1")

    assert [m.id for m in page.messages] == ["2", "1"]
    assert page.messages[1].sender.name == "Pat Peer"
    assert page.messages[1].created_at.tzinfo is not None
    assert page.conversation.status == BookingStatus.APPROVED
    assert page.pagination["total_pages"] == 1
    request = route.calls[0].request
    assert request.headers["Authorization"] == "Bearer tok"
    assert request.headers["X-Request-ID"]
    await client.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_no_token_no_auth_header():
    client = _client(token=None)
    route = respx.get(f"{BASE}/bookings/1/messages").respond(200, json={"messages": []})

    await client.fetch_messages("1")

    assert "Authorization" not in route.calls[0].request.headers
    await client.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_send_message_posts_wrapped_body():
    client = _client()
    route = respx.post(f"{BASE}/bookings/1/messages").respond(
        201, json=message_payload(42, sender_id="me", metadata={"client_msg_id": "k1"}),
    )

    message = await client.send_message(
        OutgoingMessage(conversation_id="1", body="hello", correlation_id="k1"),
    )

    body = json.loads(route.calls[0].request.content)
    assert body == {
        "message": {
            "message_text": "hello",
            "message_type": "text",
            "metadata": {"client_msg_id": "k1"},
        }
    }
    assert message.id == "42"
    assert message.correlation_id == "k1"
    await client.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_mark_read_and_search():
    client = _client()
    mark = respx.patch(f"{BASE}/bookings/1/messages/5/mark_read").respond(204)
    search = respx.get(f"{BASE}/bookings/1/messages/search").respond(
        200, json={"messages": [message_payload(5, body="noon works")]},
    )

    await client.mark_read("1", "5")
    found = await client.search_messages("1", "noon")

    assert mark.called
    assert search.calls[0].request.url.params["q"] == "noon"
    assert [m.body for m in found] == ["noon works"]
    await client.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_unread_count():
    client = _client()
    respx.get(f"{BASE}/messages/unread_count").respond(200, json={"count": 4, "success": True})

    assert await client.unread_count() == 4
    await client.aclose()


@pytest.mark.asyncio
@respx.mock
@pytest.mark.parametrize("status", [404, 401])
async def test_unread_count_unavailable(status):
    client = _client()
    respx.get(f"{BASE}/messages/unread_count").respond(status)

    assert await client.unread_count() is None
    await client.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_unread_count_unsuccessful_body():
    client = _client()
    respx.get(f"{BASE}/messages/unread_count").respond(200, json={"success": False})

    assert await client.unread_count() is None
    await client.aclose()


@pytest.mark.asyncio
@respx.mock
@pytest.mark.parametrize(
    ("status", "error"),
    [(401, ApiAuthError), (403, ApiAuthError), (404, ApiNotFoundError), (422, ApiRequestError)],
)
async def test_status_codes_map_to_errors(status, error):
    client = _client()
    respx.get(f"{BASE}/bookings/1/messages").respond(status, json={"error": "nope"})

    with pytest.raises(error):
        await client.fetch_messages("1")
    await client.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_error_message_from_body():
    client = _client()
    respx.post(f"{BASE}/bookings/1/messages").respond(
        422, json={"errors": ["Message text can't be blank"]},
    )

    with pytest.raises(ApiRequestError, match="can't be blank"):
        await client.send_message(OutgoingMessage(conversation_id="1", body="x", correlation_id="k"))
    await client.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_connection_failures():
    client = _client()
    respx.get(f"{BASE}/bookings/1/messages").mock(side_effect=httpx.ConnectError("refused"))
    respx.get(f"{BASE}/bookings/2/messages").mock(side_effect=httpx.ReadTimeout("slow"))

    with pytest.raises(ApiConnectionError):
        await client.fetch_messages("1")
    with pytest.raises(ApiConnectionError, match="api_timeout"):
        await client.fetch_messages("2")
    await client.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_invalid_payload():
    client = _client()
    respx.get(f"{BASE}/bookings/1/messages").respond(200, json={"messages": [{"id": 1}]})
    respx.get(f"{BASE}/bookings/2/messages").respond(200, content=b"<html>")

    with pytest.raises(ApiRequestError):
        await client.fetch_messages("1")
    with pytest.raises(ApiRequestError, match="api_invalid_json"):
        await client.fetch_messages("2")
    await client.aclose()
