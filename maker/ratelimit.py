"""Sliding-window admission controller for worker calls.

Bounds how many calls may be started in any rolling 60-second window while
letting callers submit work concurrently. Submitted calls wait in a FIFO
queue; a single drain task admits them as window capacity frees up and
starts each one without waiting for it to finish, so admitted calls run
concurrently.

The controller is bound to one event loop and is not thread-safe.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Length of the rolling admission window
_WINDOW_SECONDS = 60.0

# Extra wait after the oldest admission leaves the window
_SAFETY_BUFFER = 0.1


class AdmissionController:
    """FIFO rate limiter over a rolling time window.

    Usage:
        limiter = AdmissionController(max_per_window=3500)
        reply = await limiter.admit(lambda: provider.complete(...))
    """

    def __init__(
        self,
        max_per_window: int,
        *,
        window_seconds: float = _WINDOW_SECONDS,
        safety_buffer: float = _SAFETY_BUFFER,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        if max_per_window <= 0:
            raise ValueError("max_per_window must be greater than zero")
        self._max = max_per_window
        self._window_seconds = window_seconds
        self._safety_buffer = safety_buffer
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._window: deque[float] = deque()
        self._queue: deque[tuple[Callable[[], Awaitable[Any]], asyncio.Future]] = deque()
        self._drainer: asyncio.Task[None] | None = None
        self._running: set[asyncio.Task[None]] = set()

    @property
    def max_per_window(self) -> int:
        return self._max

    @property
    def pending(self) -> int:
        """Number of submitted calls not yet admitted."""
        return len(self._queue)

    @property
    def in_window(self) -> int:
        """Admissions currently counted against the window."""
        self._prune(self._clock())
        return len(self._window)

    def available(self) -> int:
        """Admissions that could be granted right now without waiting."""
        return max(0, self._max - self.in_window)

    def can_admit(self, count: int) -> bool:
        """Whether ``count`` calls could be admitted right now."""
        return self.available() >= count

    def submit(self, task: Callable[[], Awaitable[T]]) -> asyncio.Future[T]:
        """Enqueue a call and return a future for its result.

        Returns immediately. The future resolves with the call's result
        (or exception) once it has been admitted and has finished.
        Must be called from within a running event loop.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[T] = loop.create_future()
        self._queue.append((task, future))
        self._ensure_drainer(loop)
        return future

    async def admit(self, task: Callable[[], Awaitable[T]]) -> T:
        """Run ``task`` once admitted and return its result."""
        return await self.submit(task)

    def _ensure_drainer(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._drainer is None or self._drainer.done():
            self._drainer = loop.create_task(self._drain())

    def _prune(self, now: float) -> None:
        while self._window and now - self._window[0] >= self._window_seconds:
            self._window.popleft()

    async def _drain(self) -> None:
        """Admit queued calls in order, sleeping whenever the window is full."""
        while self._queue:
            now = self._clock()
            self._prune(now)

            if len(self._window) < self._max:
                task, future = self._queue.popleft()
                if future.done():
                    # Caller gave up before admission; no slot consumed
                    continue
                self._window.append(self._clock())
                self._start(task, future)
                continue

            wait = self._window_seconds - (now - self._window[0]) + self._safety_buffer
            logger.debug(
                "Admission window full (%d/%d), waiting %.2fs with %d queued",
                len(self._window), self._max, wait, len(self._queue),
            )
            await self._sleep(wait)

    def _start(
        self, task: Callable[[], Awaitable[Any]], future: asyncio.Future,
    ) -> None:
        runner = asyncio.get_running_loop().create_task(self._run(task, future))
        self._running.add(runner)
        runner.add_done_callback(self._running.discard)

    @staticmethod
    async def _run(
        task: Callable[[], Awaitable[Any]], future: asyncio.Future,
    ) -> None:
        try:
            result = await task()
        except asyncio.CancelledError:
            if not future.done():
                future.cancel()
            raise
        except Exception as exc:
            if not future.done():
                future.set_exception(exc)
        else:
            if not future.done():
                future.set_result(result)
