from __future__ import annotations

import asyncio

import pytest

from booking_messenger.services.typing_coordinator import TypingCoordinator
from tests.conftest import ManualSleep, wait_until


class SignalRecorder:
    def __init__(self, delivered: bool = True) -> None:
        self.sent: list[bool] = []
        self.delivered = delivered

    async def __call__(self, is_typing: bool) -> bool:
        self.sent.append(is_typing)
        return self.delivered


@pytest.fixture
def parts(cfg, clock):
    sleep = ManualSleep()
    signals = SignalRecorder()
    coordinator = TypingCoordinator("me", signals, cfg=cfg, clock=clock, sleep=sleep)
    return coordinator, signals, sleep


@pytest.mark.asyncio
async def test_peer_start_and_stop(parts):
    coordinator, _, _ = parts

    coordinator.on_peer_typing("p1", True)
    assert coordinator.typing_peers == {"p1"}
    assert coordinator.text == "Someone is typing…"

    coordinator.on_peer_typing("p1", False)
    assert coordinator.typing_peers == frozenset()
    assert coordinator.text == ""


@pytest.mark.asyncio
async def test_several_peers(parts):
    coordinator, _, _ = parts

    coordinator.on_peer_typing("p1", True)
    coordinator.on_peer_typing("p2", True)

    assert coordinator.text == "2 people are typing…"


@pytest.mark.asyncio
async def test_own_signal_is_ignored(parts):
    coordinator, _, _ = parts

    coordinator.on_peer_typing("me", True)

    assert coordinator.typing_peers == frozenset()


@pytest.mark.asyncio
async def test_peer_expires_after_window(parts, clock):
    coordinator, _, sleep = parts
    seen = []
    coordinator.add_listener(seen.append)

    coordinator.on_peer_typing("p1", True)
    clock.advance(2.5)
    assert coordinator.typing_peers == {"p1"}

    clock.advance(0.5)
    assert coordinator.typing_peers == frozenset()

    await wait_until(lambda: sleep.waiting)
    sleep.release(3.0)
    await wait_until(lambda: len(seen) == 2)
    assert seen == [frozenset({"p1"}), frozenset()]


@pytest.mark.asyncio
async def test_repeated_start_extends_window(parts, clock):
    coordinator, _, _ = parts

    coordinator.on_peer_typing("p1", True)
    clock.advance(2)
    coordinator.on_peer_typing("p1", True)
    clock.advance(2)

    assert coordinator.typing_peers == {"p1"}


@pytest.mark.asyncio
async def test_early_expiry_wakeup_rearms_for_remaining_time(parts, clock):
    coordinator, _, sleep = parts
    seen = []
    coordinator.add_listener(seen.append)

    coordinator.on_peer_typing("p1", True)
    await wait_until(lambda: sleep.waiting)
    clock.advance(1)
    sleep.release(3.0)
    await wait_until(lambda: sleep.waiting)

    assert coordinator.typing_peers == {"p1"}
    assert [delay for delay, _ in sleep.waiting] == [2.0]

    clock.advance(2)
    sleep.release(2.0)
    await wait_until(lambda: len(seen) == 2)

    assert seen == [{"p1"}, frozenset()]


@pytest.mark.asyncio
async def test_local_typing_is_throttled(parts, clock):
    coordinator, signals, _ = parts

    await coordinator.set_local_typing(True)
    await coordinator.set_local_typing(True)
    clock.advance(1)
    await coordinator.set_local_typing(True)

    assert signals.sent == [True, True]
    assert coordinator.is_local_typing is True


@pytest.mark.asyncio
async def test_local_idle_sends_stop(parts):
    coordinator, signals, sleep = parts

    await coordinator.set_local_typing(True)
    await wait_until(lambda: sleep.waiting)
    sleep.release(2.0)
    await wait_until(lambda: signals.sent == [True, False])

    assert coordinator.is_local_typing is False


@pytest.mark.asyncio
async def test_explicit_stop_only_when_typing(parts):
    coordinator, signals, _ = parts

    await coordinator.set_local_typing(False)
    await coordinator.set_local_typing(True)
    await coordinator.set_local_typing(False)

    assert signals.sent == [True, False]


@pytest.mark.asyncio
async def test_undelivered_signal_is_not_an_error(cfg, clock):
    signals = SignalRecorder(delivered=False)
    coordinator = TypingCoordinator("me", signals, cfg=cfg, clock=clock, sleep=ManualSleep())

    await coordinator.set_local_typing(True)

    assert signals.sent == [True]


@pytest.mark.asyncio
async def test_clear_cancels_everything(parts):
    coordinator, signals, sleep = parts
    coordinator.on_peer_typing("p1", True)
    await coordinator.set_local_typing(True)
    await wait_until(lambda: len(sleep.waiting) == 2)

    coordinator.clear()
    sleep.release()
    await asyncio.sleep(0.01)

    assert coordinator.typing_peers == frozenset()
    assert signals.sent == [True]
    assert coordinator.is_local_typing is False
