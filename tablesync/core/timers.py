"""
Timer primitives for the poll loops and bubble expiry.

Everything runs on one event loop. A Scheduler hands out cancellable
one-shot callbacks; OneShotTimer wraps one so that re-arming always
cancels the pending callback first (never more than one outstanding).
"""
from __future__ import annotations
import asyncio
import inspect
import logging
import time
from typing import Any, Callable, Optional, Protocol, Set

logger = logging.getLogger(__name__)

Callback = Callable[[], Any]


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay_ms: int, callback: Callback) -> TimerHandle: ...


class AsyncioScheduler:
    """Scheduler backed by loop.call_later.

    Coroutine callbacks are wrapped in a task; the scheduler keeps a
    reference to each task until it finishes.
    """

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    def call_later(self, delay_ms: int, callback: Callback) -> TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(delay_ms, 0) / 1000.0, self._run, callback)

    def _run(self, callback: Callback) -> None:
        result = callback()
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Timer callback failed: {task.exception()!r}")

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)


class OneShotTimer:
    """A single re-armable timer slot (cancel-then-reschedule)."""

    def __init__(self, scheduler: Scheduler) -> None:
        self._scheduler = scheduler
        self._handle: Optional[TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def arm(self, delay_ms: int, callback: Callback) -> None:
        self.cancel()
        handle: Optional[TimerHandle] = None

        def fire() -> Any:
            # A stale handle firing after a re-arm must not clear the new one.
            if self._handle is handle:
                self._handle = None
            return callback()

        handle = self._scheduler.call_later(delay_ms, fire)
        self._handle = handle

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
