"""Keyed delayed callbacks on the running event loop."""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]
TimerCallback = Callable[[], Awaitable[None] | None]


class Timers:
    """At most one pending timer per key, all bound to a generation token.

    ``cancel_all`` bumps the generation, so a timer that already woke up
    but has not yet run its callback becomes a no-op.
    """

    def __init__(self, name: str, sleep: Sleep = asyncio.sleep) -> None:
        self._name = name
        self._sleep = sleep
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    def schedule(self, key: str, delay: float, callback: TimerCallback) -> None:
        """(Re)arm ``key`` to run ``callback`` after ``delay`` seconds."""
        self.cancel(key)
        generation = self._generation
        task = asyncio.get_running_loop().create_task(
            self._run(key, delay, callback, generation),
            name=f"{self._name}:{key}",
        )
        self._tasks[key] = task

    def is_pending(self, key: str) -> bool:
        return key in self._tasks

    def cancel(self, key: str) -> None:
        task = self._tasks.pop(key, None)
        if task is not None and task is not _current_task():
            task.cancel()

    def cancel_all(self) -> None:
        self._generation += 1
        tasks, self._tasks = self._tasks, {}
        current = _current_task()
        for task in tasks.values():
            if task is not current:
                task.cancel()

    async def _run(
        self,
        key: str,
        delay: float,
        callback: TimerCallback,
        generation: int,
    ) -> None:
        await self._sleep(delay)
        if generation != self._generation:
            return
        if self._tasks.get(key) is asyncio.current_task():
            del self._tasks[key]
        try:
            result = callback()
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Timer %s:%s failed", self._name, key)


def _current_task() -> asyncio.Task[Any] | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
