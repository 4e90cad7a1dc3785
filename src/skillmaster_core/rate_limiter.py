from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable

from loguru import logger

_MIN_SLEEP_SECONDS = 0.001


class RateLimiter:
    """Process-wide gate bounding the aggregate request rate to the AI provider.

    Tokens accrue continuously at ``rate`` per second up to ``capacity``; each
    ``acquire`` takes one. Every grant is also kept in a log covering the last
    ``window_seconds`` so that no rolling window ever holds more than
    ``rate * window_seconds`` grants, including right after an idle bucket
    has refilled to capacity.

    Waiters are served first-available with no fairness ordering. A waiter
    that is cancelled while sleeping has taken nothing, so cancellation never
    leaks a token or corrupts the bucket.
    """

    def __init__(
        self,
        rate: float,
        capacity: float | None = None,
        *,
        window_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if rate <= 0:
            raise ValueError(f"rate must be positive, got {rate!r}")
        self._rate = float(rate)
        self._capacity = max(1.0, float(capacity if capacity is not None else rate))
        self._window_seconds = window_seconds
        self._max_per_window = max(1, int(self._rate * window_seconds))
        self._clock = clock
        self._sleep = sleep
        self._tokens = self._capacity
        self._updated_at = clock()
        self._grants: deque[float] = deque()

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def capacity(self) -> float:
        return self._capacity

    def available_tokens(self) -> float:
        self._refill(self._clock())
        return self._tokens

    async def acquire(self) -> None:
        while True:
            delay = self._try_take()
            if delay <= 0:
                return
            await self._sleep(max(delay, _MIN_SLEEP_SECONDS))

    def _try_take(self) -> float:
        """Take a token if one is free, otherwise return how long to wait.

        Runs without awaiting, so no other coroutine can observe the bucket
        between the check and the take.
        """
        now = self._clock()
        self._refill(now)
        while self._grants and now - self._grants[0] >= self._window_seconds:
            self._grants.popleft()

        token_wait = 0.0 if self._tokens >= 1.0 else (1.0 - self._tokens) / self._rate
        window_wait = 0.0
        if len(self._grants) >= self._max_per_window:
            window_wait = self._grants[0] + self._window_seconds - now

        delay = max(token_wait, window_wait)
        if delay > 0:
            return delay

        self._tokens -= 1.0
        self._grants.append(now)
        if self._tokens < 1.0:
            logger.debug(f"Rate limiter saturated: {len(self._grants)} grants in window, rate={self._rate:g}/s")
        return 0.0

    def _refill(self, now: float) -> None:
        elapsed = now - self._updated_at
        if elapsed > 0:
            self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
            self._updated_at = now
