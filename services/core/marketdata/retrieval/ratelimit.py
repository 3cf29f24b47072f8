"""Sliding-window rate limiter for quota-limited providers."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Sequence

from ..errors import RateLimitedError


logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """
    Proactive per-minute quota with reactive 429 backoff.

    Call timestamps are kept in order and pruned lazily. When the window is
    full, ``acquire`` waits until the oldest call leaves it, plus a margin.
    """

    def __init__(
        self,
        max_calls: int = 8,
        window_seconds: float = 60.0,
        margin_seconds: float = 0.2,
        backoff: Sequence[float] = (3.0, 6.0),
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_calls <= 0:
            raise ValueError("max_calls must be positive")
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self.margin_seconds = margin_seconds
        self.backoff = list(backoff)
        self.clock = clock
        self.sleep = sleep
        self._calls: deque[float] = deque()

    def _prune(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= self.window_seconds:
            self._calls.popleft()

    def in_window(self) -> int:
        """Number of calls recorded in the current window."""
        self._prune(self.clock())
        return len(self._calls)

    def record(self, ts: float | None = None) -> None:
        """Record a call without waiting."""
        self._calls.append(self.clock() if ts is None else ts)

    async def acquire(self) -> None:
        """Wait for a free slot in the window, then record the call."""
        now = self.clock()
        self._prune(now)
        while len(self._calls) >= self.max_calls:
            wait = self.window_seconds - (now - self._calls[0]) + self.margin_seconds
            if wait > 0:
                logger.info(f"Rate limit reached ({len(self._calls)}/{self.max_calls}), waiting {wait:.1f}s")
                await self.sleep(wait)
            now = self.clock()
            self._prune(now)
        self._calls.append(self.clock())

    async def call_with_backoff(self, call: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run ``call`` under the limiter.

        If it raises RateLimitedError despite proactive throttling, sleep for
        the next backoff delay and retry the same call. Gives up (returns
        None) after ``len(backoff) + 1`` attempts.
        """
        attempts = len(self.backoff) + 1
        for attempt in range(attempts):
            await self.acquire()
            try:
                return await call()
            except RateLimitedError:
                if attempt == attempts - 1:
                    break
                delay = self.backoff[attempt]
                logger.warning(f"Upstream rate limited (attempt {attempt + 1}/{attempts}), backing off {delay}s")
                await self.sleep(delay)
        logger.warning(f"Giving up after {attempts} rate-limited attempts")
        return None
