"""Rate limiting for the completion API.

Implementation: fixed window counter.
    - The first request after the window expires opens a new window
    - At most ``max_requests`` acquisitions per window
    - When the cap is hit, ``acquire()`` sleeps until the window boundary,
      resets the counter and proceeds

Design decisions:
    - In-memory only. Each insight worker owns its limiter.
    - Async-aware. Uses asyncio.Lock so concurrent callers queue in order.
    - Clock and sleep are injectable so tests never wait on wall time.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

import structlog

logger = structlog.get_logger()


class FixedWindowRateLimiter:
    """Caps acquisitions to ``max_requests`` per ``window_seconds``.

    Args:
        max_requests: Acquisitions allowed inside one window
        window_seconds: Window length
        clock: Monotonic time source, seconds
        sleep: Coroutine used to wait for the window boundary
    """

    def __init__(
        self,
        max_requests: int = 25,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_wait: Callable[[float], None] | None = None,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._on_wait = on_wait
        self._window_start = clock()
        self._count = 0
        self._lock = asyncio.Lock()

    def _roll_window(self) -> None:
        now = self._clock()
        if now - self._window_start >= self.window_seconds:
            self._window_start = now
            self._count = 0

    @property
    def used(self) -> int:
        """Acquisitions counted in the current window."""
        self._roll_window()
        return self._count

    def seconds_until_reset(self) -> float:
        elapsed = self._clock() - self._window_start
        return max(0.0, self.window_seconds - elapsed)

    def try_acquire(self) -> bool:
        """Take a slot if one is free in the current window. Never waits."""
        self._roll_window()
        if self._count < self.max_requests:
            self._count += 1
            return True
        return False

    async def acquire(self) -> None:
        """Take a slot, sleeping until the window boundary when the cap is reached."""
        async with self._lock:
            if self.try_acquire():
                return

            wait = self.seconds_until_reset()
            logger.info(
                "rate_limit_wait",
                wait_seconds=round(wait, 3),
                max_requests=self.max_requests,
                window_seconds=self.window_seconds,
            )
            if self._on_wait is not None:
                self._on_wait(wait)
            await self._sleep(wait)

            self._window_start = self._clock()
            self._count = 1
