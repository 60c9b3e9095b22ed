"""Shared test fixtures."""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from booking_messenger.application.dto.message import MessagePage, OutgoingMessage
from booking_messenger.application.dto.session import Session
from booking_messenger.application.ports.api import ApiError
from booking_messenger.application.ports.connector import LiveChannelError
from booking_messenger.config import Settings
from booking_messenger.domain.entities.conversation import Conversation
from booking_messenger.domain.entities.message import (
    CORRELATION_KEY,
    Confirmed,
    Message,
    Pending,
    Sender,
)
from booking_messenger.domain.value_objects.enums import BookingStatus, MessageType

BASE_TIME = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


def make_settings(**overrides: Any) -> Settings:
    """Settings with timings small enough for real-time tests."""
    values: dict[str, Any] = {
        "API_BASE_URL": "http://api.test/api/v1",
        "WS_URL": "ws://api.test/cable",
        "JWT_SECRET": "",
        "WS_HEALTH_CHECK_SECONDS": 0.01,
        "WS_CONNECT_TIMEOUT_SECONDS": 1.0,
        "WS_RECONNECT_BASE_SECONDS": 0.01,
        "WS_RECONNECT_MAX_SECONDS": 0.05,
        "WS_MAX_RECONNECT_ATTEMPTS": 5,
        "WS_SUBSCRIBE_DELAY_SECONDS": 0.0,
        "POLL_FOCUSED_SECONDS": 0.05,
        "POLL_BACKGROUND_SECONDS": 0.5,
        "UNREAD_POLL_SECONDS": 60.0,
        "UNREAD_UNAVAILABLE_POLL_SECONDS": 300.0,
        "UNREAD_REFRESH_DELAY_SECONDS": 0.0,
        "TYPING_PEER_EXPIRY_SECONDS": 3.0,
        "TYPING_IDLE_SECONDS": 2.0,
        "TYPING_REFRESH_SECONDS": 1.0,
        "SEND_ACK_TIMEOUT_SECONDS": 0.5,
        "REDIS_URL": None,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def cfg() -> Settings:
    return make_settings()


def make_sender(sender_id: str = "peer", name: str = "Pat Peer") -> Sender:
    return Sender(id=sender_id, name=name)


def make_session(user_id: str = "me", token: str = "token-me") -> Session:
    return Session(user_id=user_id, token=token, name="Me Myself")


def make_conversation(
    conversation_id: str = "c1",
    status: BookingStatus = BookingStatus.APPROVED,
) -> Conversation:
    return Conversation(id=conversation_id, status=status, title="Studio session")


def make_message(
    message_id: str = "1",
    *,
    conversation_id: str = "c1",
    sender_id: str = "peer",
    body: str = "hello",
    seconds: float = 0,
    correlation_id: str | None = None,
    pending: bool = False,
    read_at: datetime | None = None,
) -> Message:
    if pending:
        delivery: Pending | Confirmed = Pending(
            local_id=message_id, correlation_id=correlation_id or f"corr-{message_id}",
        )
    else:
        delivery = Confirmed(server_id=message_id)
    metadata = {CORRELATION_KEY: correlation_id} if correlation_id and not pending else {}
    return Message(
        delivery=delivery,
        conversation_id=conversation_id,
        sender=make_sender(sender_id),
        body=body,
        type=MessageType.TEXT,
        created_at=BASE_TIME + timedelta(seconds=seconds),
        read_at=read_at,
        metadata=metadata,
    )


def message_payload(
    message_id: int | str = 1,
    *,
    sender_id: int | str = 7,
    body: str = "hello",
    seconds: float = 0,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Message as the marketplace API serialises it."""
    return {
        "id": message_id,
        "booking_id": 1,
        "message_text": body,
        "message_type": "text",
        "sender": {"id": sender_id, "first_name": "Pat", "last_name": "Peer", "avatar_url": None},
        "created_at": (BASE_TIME + timedelta(seconds=seconds)).isoformat(),
        "read_at": None,
        "metadata": metadata or {},
    }


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


class FakeClock:
    def __init__(self, now: datetime = BASE_TIME) -> None:
        self._now = now
        self._monotonic = 1000.0

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)
        self._monotonic += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class RecordingSleep:
    """Sleep replacement that records the delay and yields once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class ManualSleep:
    """Sleep replacement whose sleepers wake only on ``release``."""

    def __init__(self) -> None:
        self.waiting: list[tuple[float, asyncio.Future[None]]] = []

    async def __call__(self, delay: float) -> None:
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self.waiting.append((delay, future))
        await future

    def release(self, delay: float | None = None) -> int:
        released = 0
        remaining = []
        for wanted, future in self.waiting:
            if delay is None or wanted == delay:
                if not future.done():
                    future.set_result(None)
                released += 1
            else:
                remaining.append((wanted, future))
        self.waiting = remaining
        return released


# Live channel


class FakeConnection:
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._inbox: asyncio.Queue[str | None] = asyncio.Queue()

    @property
    def is_open(self) -> bool:
        return not self.closed

    async def recv(self) -> str:
        raw = await self._inbox.get()
        if raw is None:
            raise LiveChannelError("connection closed")
        return raw

    async def send(self, raw: str) -> None:
        if self.closed:
            raise LiveChannelError("connection closed")
        self.sent.append(json.loads(raw))

    async def close(self) -> None:
        self.drop()

    def push(self, frame: dict[str, Any]) -> None:
        self._inbox.put_nowait(json.dumps(frame))

    def push_raw(self, raw: str) -> None:
        self._inbox.put_nowait(raw)

    def drop(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(None)

    def commands(self, command: str) -> list[dict[str, Any]]:
        return [c for c in self.sent if c["command"] == command]

    def channel_payloads(self) -> list[dict[str, Any]]:
        return [json.loads(c["data"]) for c in self.commands("message")]


class FakeConnector:
    def __init__(self, *, failures: int = 0, auto_welcome: bool = True) -> None:
        self.failures = failures
        self.auto_welcome = auto_welcome
        self.urls: list[str] = []
        self.connections: list[FakeConnection] = []

    @property
    def last(self) -> FakeConnection:
        return self.connections[-1]

    async def open(self, url: str) -> FakeConnection:
        self.urls.append(url)
        if self.failures > 0:
            self.failures -= 1
            raise LiveChannelError("connection refused")
        connection = FakeConnection()
        self.connections.append(connection)
        if self.auto_welcome:
            connection.push({"type": "welcome"})
        return connection


def confirm_frame(identifier: str) -> dict[str, Any]:
    return {"type": "confirm_subscription", "identifier": identifier}


def channel_frame(identifier: str, message: dict[str, Any]) -> dict[str, Any]:
    return {"identifier": identifier, "message": message}


# Request/response API


@dataclass
class FakeMessageApi:
    """In-memory marketplace API."""
    self_sender: Sender = field(default_factory=lambda: Sender(id="me", name="Me Myself"))
    messages: dict[str, list[Message]] = field(default_factory=dict)
    conversations: dict[str, Conversation] = field(default_factory=dict)
    unread: int | None = 0
    fail_fetch: ApiError | None = None
    fail_send: ApiError | None = None
    fail_mark_read: ApiError | None = None
    fail_unread: ApiError | None = None
    send_gate: asyncio.Event | None = None
    sent: list[OutgoingMessage] = field(default_factory=list)
    read: list[tuple[str, str]] = field(default_factory=list)
    fetch_calls: int = 0
    unread_calls: int = 0
    next_id: int = 100

    async def fetch_messages(
        self,
        conversation_id: str,
        *,
        params: dict[str, Any] | None = None,
    ) -> MessagePage:
        self.fetch_calls += 1
        if self.fail_fetch is not None:
            raise self.fail_fetch
        return MessagePage(
            messages=list(self.messages.get(conversation_id, [])),
            pagination={"page": 1},
            conversation=self.conversations.get(conversation_id),
        )

    async def send_message(self, outgoing: OutgoingMessage) -> Message:
        if self.send_gate is not None:
            await self.send_gate.wait()
        if self.fail_send is not None:
            raise self.fail_send
        self.sent.append(outgoing)
        self.next_id += 1
        message = Message(
            delivery=Confirmed(server_id=str(self.next_id)),
            conversation_id=outgoing.conversation_id,
            sender=self.self_sender,
            body=outgoing.body,
            type=outgoing.type,
            created_at=BASE_TIME + timedelta(minutes=5),
            metadata=outgoing.wire_metadata(),
        )
        self.messages.setdefault(outgoing.conversation_id, []).append(message)
        return message

    async def mark_read(self, conversation_id: str, message_id: str) -> None:
        if self.fail_mark_read is not None:
            raise self.fail_mark_read
        self.read.append((conversation_id, message_id))

    async def unread_count(self) -> int | None:
        self.unread_calls += 1
        if self.fail_unread is not None:
            raise self.fail_unread
        return self.unread

    async def search_messages(self, conversation_id: str, query: str) -> list[Message]:
        return [
            m for m in self.messages.get(conversation_id, [])
            if query.lower() in m.body.lower()
        ]


@pytest.fixture
def api() -> FakeMessageApi:
    return FakeMessageApi()


# Signals


class RecordingBus:
    def __init__(self) -> None:
        self.published: list[Any] = []
        self._handlers: list[Callable[[Any], None]] = []

    def publish(self, signal: Any) -> None:
        self.published.append(signal)
        for handler in list(self._handlers):
            handler(signal)

    def subscribe(self, handler: Callable[[Any], None]) -> Callable[[], None]:
        self._handlers.append(handler)
        return lambda: self._handlers.remove(handler)

    def of_type(self, kind: type) -> list[Any]:
        return [s for s in self.published if isinstance(s, kind)]


@pytest.fixture
def bus() -> RecordingBus:
    return RecordingBus()


class FakePubSub:
    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self.channels: list[str] = []

    async def subscribe(self, channel: str) -> None:
        self.channels.append(channel)
        self._redis.subscribers.setdefault(channel, []).append(self._queue)
        self._queue.put_nowait({"type": "subscribe", "data": 1})

    async def unsubscribe(self, channel: str) -> None:
        queues = self._redis.subscribers.get(channel, [])
        if self._queue in queues:
            queues.remove(self._queue)

    async def aclose(self) -> None:
        pass

    async def listen(self):
        while True:
            yield await self._queue.get()


class FakeRedis:
    """Pub/Sub hub shared by several relays, one per simulated process."""

    def __init__(self) -> None:
        self.subscribers: dict[str, list[asyncio.Queue[dict[str, Any]]]] = {}
        self.published: list[tuple[str, str]] = []

    async def publish(self, channel: str, data: str) -> int:
        self.published.append((channel, data))
        queues = self.subscribers.get(channel, [])
        for queue in queues:
            queue.put_nowait({"type": "message", "data": data})
        return len(queues)

    def pubsub(self) -> FakePubSub:
        return FakePubSub(self)

    async def aclose(self) -> None:
        pass


class BrokenPubSub(FakePubSub):
    async def subscribe(self, channel: str) -> None:
        raise RedisConnectionError("redis down")


class BrokenRedis(FakeRedis):
    """Hub whose subscriptions fail, as when the server goes away."""

    def pubsub(self) -> BrokenPubSub:
        return BrokenPubSub(self)
