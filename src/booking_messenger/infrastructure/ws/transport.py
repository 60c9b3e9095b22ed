"""Single live channel per login session, multiplexed per conversation."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable

import httpx
from pydantic import ValidationError

from booking_messenger.application.exceptions import (
    AppError,
    ChannelConnectionError,
    ChannelRejectedError,
)
from booking_messenger.application.ports.clock import Clock, SystemClock
from booking_messenger.application.ports.connector import (
    LiveChannelError,
    LiveConnection,
    LiveConnector,
)
from booking_messenger.config import Settings, settings
from booking_messenger.domain.value_objects.enums import ConnectionState
from booking_messenger.infrastructure.timers import Sleep, Timers
from booking_messenger.infrastructure.ws.protocol import (
    CableCommand,
    CableFrame,
    channel_identifier,
    message_command,
    subscribe_command,
    unsubscribe_command,
)
from booking_messenger.infrastructure.ws.subscription import (
    ChannelSubscription,
    NullSubscription,
    SubscriptionHandle,
    SubscriptionHandlers,
)

logger = logging.getLogger(__name__)

StateListener = Callable[[ConnectionState], None]

_RECONNECT = "reconnect"


@dataclass(frozen=True, slots=True)
class ReconnectPolicy:
    base_delay: float = 1.0
    max_delay: float = 30.0
    max_attempts: int = 5

    def delay_for(self, attempt: int) -> float:
        """Delay before reconnect ``attempt`` (1-based)."""
        return min(self.base_delay * 2 ** (attempt - 1), self.max_delay)

    @classmethod
    def from_settings(cls, cfg: Settings) -> ReconnectPolicy:
        return cls(
            base_delay=cfg.WS_RECONNECT_BASE_SECONDS,
            max_delay=cfg.WS_RECONNECT_MAX_SECONDS,
            max_attempts=cfg.WS_MAX_RECONNECT_ATTEMPTS,
        )


class MessageTransport:
    """Owns the push connection of one authenticated session.

    Failures never raise out of ``connect``; they are reported through
    ``state`` and ``last_error``. Health is sampled on a fixed interval and
    a lost connection is retried with exponential backoff.
    """

    def __init__(
        self,
        connector: LiveConnector | None,
        *,
        cfg: Settings = settings,
        clock: Clock | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._connector = connector
        self._cfg = cfg
        self._policy = ReconnectPolicy.from_settings(cfg)
        self._clock = clock or SystemClock()
        self._sleep = sleep
        self._timers = Timers("transport", sleep)
        self._subscriptions: dict[str, ChannelSubscription] = {}
        self._listeners: list[StateListener] = []
        self._background: set[asyncio.Task[Any]] = set()
        self._connection: LiveConnection | None = None
        self._reader: asyncio.Task[None] | None = None
        self._monitor: asyncio.Task[None] | None = None
        self._credential: str | None = None
        self._connecting_since: float | None = None
        self._generation = 0
        self.state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0
        self.last_error: AppError | None = None
        self.last_ping_at: float | None = None

    @property
    def has_live_channel(self) -> bool:
        return self._connector is not None

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def policy(self) -> ReconnectPolicy:
        return self._policy

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def status(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "is_connected": self.is_connected,
            "has_live_channel": self.has_live_channel,
            "subscription_count": len(self._subscriptions),
            "reconnect_attempts": self.reconnect_attempts,
            "last_error": self.last_error.detail if self.last_error else None,
        }

    # Lifecycle

    async def connect(self, credential: str) -> None:
        if self.state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            return
        if self._connector is None:
            logger.info("No live channel available; messages will be polled")
            self.last_error = ChannelConnectionError("Live channel unavailable")
            return
        self._credential = credential
        await self._open()

    async def retry(self, credential: str | None = None) -> None:
        """Manual retry after the backoff gave up or the server refused us."""
        self.reconnect_attempts = 0
        self.last_error = None
        credential = credential or self._credential
        if credential is None:
            return
        if self.state == ConnectionState.CONNECTING:
            self._drop_connection()
            self._set_state(ConnectionState.DISCONNECTED)
        await self.connect(credential)

    async def disconnect(self) -> None:
        """Tear down every subscription, timer and the socket. Idempotent."""
        self._generation += 1
        self._timers.cancel_all()
        subscriptions, self._subscriptions = self._subscriptions, {}
        for subscription in subscriptions.values():
            subscription.teardown()
        self._credential = None
        self._connecting_since = None
        self.reconnect_attempts = 0
        monitor, self._monitor = self._monitor, None
        if monitor is not None and monitor is not asyncio.current_task():
            monitor.cancel()
        connection = self._drop_connection()
        self._set_state(ConnectionState.DISCONNECTED)
        if connection is not None:
            await _close_quietly(connection)

    # Subscriptions

    def subscribe(self, conversation_id: str, handlers: SubscriptionHandlers) -> SubscriptionHandle:
        if self._connector is None:
            return NullSubscription(conversation_id)
        identifier = channel_identifier(conversation_id)
        previous = self._subscriptions.pop(identifier, None)
        if previous is not None:
            logger.debug("Replacing subscription for conversation %s", conversation_id)
            previous.teardown()
        subscription = ChannelSubscription(
            self,
            conversation_id,
            identifier,
            handlers,
            setup_delay=self._cfg.WS_SUBSCRIBE_DELAY_SECONDS,
            sleep=self._sleep,
        )
        self._subscriptions[identifier] = subscription
        subscription.schedule_setup()
        return subscription

    async def register_subscription(self, subscription: ChannelSubscription) -> bool:
        if self._subscriptions.get(subscription.identifier) is not subscription:
            return False
        return await self._send_command(subscribe_command(subscription.identifier))

    async def release_subscription(self, subscription: ChannelSubscription) -> None:
        if self._subscriptions.get(subscription.identifier) is subscription:
            del self._subscriptions[subscription.identifier]
            await self._send_command(unsubscribe_command(subscription.identifier))

    async def send_to_channel(self, subscription: ChannelSubscription, payload: dict[str, Any]) -> bool:
        if self._subscriptions.get(subscription.identifier) is not subscription:
            return False
        return await self._send_command(message_command(subscription.identifier, payload))

    # Connection management

    async def _open(self) -> None:
        self._timers.cancel(_RECONNECT)
        self._generation += 1
        generation = self._generation
        self._connecting_since = self._clock.monotonic()
        self._set_state(ConnectionState.CONNECTING)
        self._ensure_monitor()
        url = self._url_with_token(self._credential or "")
        try:
            connection = await asyncio.wait_for(
                self._connector.open(url),  # type: ignore[union-attr]
                timeout=self._cfg.WS_CONNECT_TIMEOUT_SECONDS,
            )
        except (LiveChannelError, OSError, TimeoutError) as exc:
            if generation != self._generation:
                return
            logger.warning("Live channel connect failed: %s", exc or type(exc).__name__)
            self._lose_connection(ChannelConnectionError(f"Connect failed: {exc}"))
            return
        if generation != self._generation:
            await _close_quietly(connection)
            return
        self._connection = connection
        self._reader = asyncio.get_running_loop().create_task(
            self._read_loop(connection, generation), name="transport-reader",
        )

    def _url_with_token(self, credential: str) -> str:
        return str(httpx.URL(self._cfg.WS_URL).copy_merge_params({"token": credential}))

    async def _read_loop(self, connection: LiveConnection, generation: int) -> None:
        try:
            while generation == self._generation:
                raw = await connection.recv()
                if generation != self._generation:
                    return
                self._dispatch(raw)
        except LiveChannelError as exc:
            logger.info("Live channel closed: %s", exc)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Live channel reader failed")
        if generation == self._generation:
            self._check_health(force_closed=True)

    def _ensure_monitor(self) -> None:
        if self._monitor is None or self._monitor.done():
            self._monitor = asyncio.get_running_loop().create_task(
                self._monitor_loop(), name="transport-health",
            )

    async def _monitor_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cfg.WS_HEALTH_CHECK_SECONDS)
            try:
                self._check_health()
            except Exception:
                logger.exception("Transport health check failed")

    def _check_health(self, *, force_closed: bool = False) -> None:
        connection = self._connection
        closed = force_closed or (connection is not None and not connection.is_open)
        if self.state == ConnectionState.CONNECTING:
            started = self._connecting_since
            if started is None:
                started = self._connecting_since = self._clock.monotonic()
            if self._clock.monotonic() - started >= self._cfg.WS_CONNECT_TIMEOUT_SECONDS:
                logger.warning("Live channel stalled while connecting")
                self._lose_connection(ChannelConnectionError("Connect timed out"))
            elif closed:
                self._lose_connection(ChannelConnectionError("Closed during handshake"))
        elif self.state == ConnectionState.CONNECTED:
            if connection is None or closed:
                logger.warning("Live channel lost")
                self._lose_connection(ChannelConnectionError("Live channel lost"))

    def _lose_connection(self, error: AppError) -> None:
        self._generation += 1
        connection = self._drop_connection()
        if connection is not None:
            self._spawn(_close_quietly(connection))
        self.last_error = error
        self._connecting_since = None
        for subscription in list(self._subscriptions.values()):
            subscription.handle_transport_down()
        self._set_state(ConnectionState.DISCONNECTED)
        self._handle_disconnection()

    def _handle_disconnection(self) -> None:
        if self._credential is None:
            return
        if self.reconnect_attempts >= self._policy.max_attempts:
            logger.error(
                "Giving up on live channel after %d attempts", self.reconnect_attempts,
            )
            self.last_error = ChannelConnectionError(
                "Live channel unavailable; retry manually",
            )
            self._set_state(ConnectionState.ERRORED)
            return
        self.reconnect_attempts += 1
        delay = self._policy.delay_for(self.reconnect_attempts)
        logger.info(
            "Reconnecting in %.1fs (attempt %d/%d)",
            delay, self.reconnect_attempts, self._policy.max_attempts,
        )
        self._timers.schedule(_RECONNECT, delay, self._reconnect)

    async def _reconnect(self) -> None:
        if self.state != ConnectionState.DISCONNECTED or self._credential is None:
            return
        await self._open()

    def _drop_connection(self) -> LiveConnection | None:
        connection, self._connection = self._connection, None
        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
        return connection

    # Inbound frames

    def _dispatch(self, raw: str) -> None:
        try:
            frame = CableFrame.model_validate_json(raw)
        except ValidationError:
            logger.warning("Dropping malformed frame")
            return
        if frame.type == "welcome":
            self._on_welcome()
        elif frame.type == "ping":
            self.last_ping_at = self._clock.monotonic()
        elif frame.type == "disconnect":
            self._on_server_disconnect(frame)
        else:
            self._on_channel_frame(frame)

    def _on_welcome(self) -> None:
        self.reconnect_attempts = 0
        self.last_error = None
        self._connecting_since = None
        self._timers.cancel(_RECONNECT)
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Live channel connected (%d subscriptions)", len(self._subscriptions))
        for subscription in list(self._subscriptions.values()):
            if subscription.ready:
                self._spawn(self.register_subscription(subscription))

    def _on_server_disconnect(self, frame: CableFrame) -> None:
        if frame.reason == "unauthorized" or frame.reconnect is False:
            logger.warning("Live channel refused by server: %s", frame.reason)
            self._generation += 1
            connection = self._drop_connection()
            if connection is not None:
                self._spawn(_close_quietly(connection))
            self._timers.cancel_all()
            self.last_error = ChannelRejectedError(frame.reason or "Connection rejected")
            for subscription in list(self._subscriptions.values()):
                subscription.handle_transport_down()
            self._set_state(ConnectionState.REJECTED)
            return
        self._lose_connection(ChannelConnectionError(frame.reason or "Server closed the channel"))

    def _on_channel_frame(self, frame: CableFrame) -> None:
        subscription = self._subscriptions.get(frame.identifier or "")
        if subscription is None:
            logger.debug("Frame for unknown identifier %r", frame.identifier)
            return
        if frame.type == "confirm_subscription":
            subscription.handle_confirmed()
        elif frame.type == "reject_subscription":
            del self._subscriptions[subscription.identifier]
            subscription.handle_rejected()
        elif frame.message is not None:
            subscription.handle_payload(frame.message)

    # Outbound

    async def _send_command(self, command: CableCommand) -> bool:
        connection = self._connection
        if connection is None or self.state != ConnectionState.CONNECTED:
            return False
        try:
            await connection.send(command.model_dump_json(exclude_none=True))
        except LiveChannelError as exc:
            logger.warning("Live channel send failed: %s", exc)
            return False
        return True

    def _set_state(self, state: ConnectionState) -> None:
        if state == self.state:
            return
        self.state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Transport state listener failed")

    def _spawn(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)


async def _close_quietly(connection: LiveConnection) -> None:
    try:
        await connection.close()
    except (LiveChannelError, OSError):
        logger.debug("Error while closing live channel", exc_info=True)
