"""Small asyncio primitives shared by the background workers."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Any, Awaitable, Callable, Generic, Hashable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Run at most one task per key; concurrent callers share the result."""

    def __init__(self) -> None:
        self._tasks: dict[Hashable, asyncio.Task[T]] = {}

    def in_flight(self, key: Hashable) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    async def run(self, key: Hashable, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._tasks.get(key)
        if task is None or task.done():
            task = asyncio.ensure_future(factory())
            self._tasks[key] = task
            task.add_done_callback(lambda done, key=key: self._forget(key, done))
        return await asyncio.shield(task)

    def _forget(self, key: Hashable, task: asyncio.Task[T]) -> None:
        if self._tasks.get(key) is task:
            self._tasks.pop(key, None)

    async def cancel_all(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError, Exception):
                await task


class TrailingDebounce:
    """Delay a callable until no new request arrived for ``delay`` seconds.

    Every ``trigger`` cancels the pending timer and starts a new one, so only
    the state present after quiescence is acted upon.
    """

    def __init__(
        self,
        action: Callable[[], Awaitable[Any] | Any],
        delay: float,
        *,
        name: str = "debounce",
    ) -> None:
        self._action = action
        self._delay = max(0.0, delay)
        self._name = name
        self._task: asyncio.Task[None] | None = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self) -> None:
        """Schedule the action, restarting the quiet-period window."""

        if self._task is not None and not self._task.done():
            self._task.cancel()
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run())

    async def _run(self) -> None:
        await asyncio.sleep(self._delay)
        try:
            await self._invoke()
        except Exception:  # pragma: no cover - background safety net
            logger.exception("Debounced %s action failed", self._name)

    async def _invoke(self) -> None:
        result = self._action()
        if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
            await result

    async def flush(self) -> None:
        """Run a pending action immediately instead of waiting for the timer."""

        if not self.pending:
            return
        await self.cancel()
        await self._invoke()

    async def cancel(self) -> None:
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task


class LatestTask(Generic[T]):
    """Keep only the most recently submitted task alive."""

    def __init__(self, *, name: str = "task") -> None:
        self._name = name
        self._task: asyncio.Task[T] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def submit(self, coro: Awaitable[T]) -> asyncio.Task[T]:
        """Cancel the pending task, if any, and schedule ``coro`` in its place."""

        if self._task is not None and not self._task.done():
            logger.debug("Superseding pending %s", self._name)
            self._task.cancel()
        self._task = asyncio.ensure_future(coro)
        return self._task

    async def cancel(self) -> None:
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
