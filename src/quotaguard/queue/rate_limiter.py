"""
Request budget bookkeeping and backoff policy.

The limiter never touches the network. It decides how long a caller waits
before its request may be queued, tracks backoff debt after throttling and
keeps identical requests from being handled concurrently.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from quotaguard.core.config import LimiterSettings
from quotaguard.utils.logging import get_logger

logger = get_logger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class LimiterSnapshot:
    """Point-in-time view of the limiter counters."""

    request_count: int
    last_request_time: float
    waiting_time: float
    pending: frozenset[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_count": self.request_count,
            "last_request_time": round(self.last_request_time, 3),
            "waiting_time": round(self.waiting_time, 3),
            "pending": sorted(self.pending),
        }


class BackoffTimer:
    """A backoff sleep that can be cancelled before it fires."""

    def __init__(self, delay_ms: float, sleep: Sleep):
        self.delay_ms = delay_ms
        self._task: asyncio.Future[Any] = asyncio.ensure_future(sleep(delay_ms / 1000.0))

    async def wait(self) -> None:
        """Wait for the timer to fire. Raises CancelledError if it was cancelled."""
        await self._task

    def cancel(self) -> None:
        self._task.cancel()

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled()

    @property
    def done(self) -> bool:
        return self._task.done()


class RateLimiter:
    """
    Rolling-window request limiter with exponential backoff.

    Features:
    - One shared budget for every caller (``max_requests_per_window``)
    - Minimum spacing between admitted requests
    - Backoff debt that accumulates until the window resets
    - Per-identity exclusion so the same URL is never in flight twice

    All policy values are milliseconds. ``clock`` returns seconds and
    ``sleep`` takes seconds, so ``time.monotonic`` and ``asyncio.sleep``
    work as-is and tests can inject fakes.

    The limiter is not thread-safe. Use it from a single event loop.

    Example:
        limiter = RateLimiter()

        delay = await limiter.admission_delay(url, retry_count=0)
        try:
            await limiter.sleep(delay)
            limiter.note_admitted()
            ...
        finally:
            limiter.release_pending(url)
    """

    def __init__(
        self,
        config: LimiterSettings | None = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        self.config = config or LimiterSettings()
        self._clock = clock
        self._sleep = sleep

        self.request_count = 0
        self.last_request_time = self._now_ms()
        self.waiting_time = 0.0
        self.pending_request_ids: set[str] = set()

        self._last_admitted_at: float | None = None
        self._backoff_timer: BackoffTimer | None = None

        # Stats
        self._stats: dict[str, int] = {}

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def _record_stat(self, stat: str) -> None:
        self._stats[stat] = self._stats.get(stat, 0) + 1

    def _exponential_delay(self, retry_count: int) -> float:
        return self.config.retry_base_delay_ms * (2 ** retry_count)

    @property
    def max_retries(self) -> int:
        """Retry ceiling for throttled requests."""
        return self.config.max_retries

    def now(self) -> float:
        """Current limiter time in seconds."""
        return self._clock()

    async def sleep(self, delay_ms: float) -> None:
        """Sleep for ``delay_ms`` milliseconds using the limiter's sleep."""
        if delay_ms > 0:
            await self._sleep(delay_ms / 1000.0)

    async def admission_delay(self, request_id: str, retry_count: int = 0) -> float:
        """
        Compute how long a caller must wait before its request may proceed.

        Blocks while ``request_id`` is already pending, then marks it
        pending. The caller must call ``release_pending`` on every exit path.

        Args:
            request_id: Request identity (the URL)
            retry_count: Number of throttled attempts so far

        Returns:
            Delay in milliseconds, never below ``min_request_interval_ms``
        """
        while request_id in self.pending_request_ids:
            self._record_stat("pending_waits")
            logger.debug(
                "Identity already pending, polling",
                request_id=request_id,
                poll_ms=self.config.pending_poll_interval_ms,
            )
            await self.sleep(self.config.pending_poll_interval_ms)

        self.pending_request_ids.add(request_id)

        now = self._now_ms()
        elapsed = now - self.last_request_time
        if elapsed > self.config.rate_limit_window_ms:
            self.request_count = 0
            self.waiting_time = 0.0
            self.last_request_time = now
            elapsed = 0.0
            self._record_stat("window_resets")

        wait = 0.0
        if self.request_count >= self.config.max_requests_per_window:
            wait = max(
                self.config.rate_limit_window_ms - elapsed + self.waiting_time,
                self._exponential_delay(retry_count),
            )
            self._record_stat("budget_waits")

        return max(wait, self.config.min_request_interval_ms)

    def note_admitted(self) -> None:
        """Record that a network call is being issued now."""
        now = self._now_ms()
        self.request_count += 1
        self.last_request_time = now
        self._last_admitted_at = now
        self._record_stat("admitted")

    def spacing_delay(self) -> float:
        """Milliseconds still needed before the next call keeps the minimum interval."""
        if self._last_admitted_at is None:
            return 0.0
        remaining = self._last_admitted_at + self.config.min_request_interval_ms - self._now_ms()
        return max(0.0, remaining)

    def release_pending(self, request_id: str) -> None:
        """Clear the pending marker for ``request_id``. Safe to call twice."""
        self.pending_request_ids.discard(request_id)

    def backoff_delay(self, retry_count: int) -> BackoffTimer:
        """
        Start an exponential backoff timer after a throttled response.

        The delay is added to the backoff debt so later admissions in the
        same window wait longer. A previous timer that has not fired yet is
        cancelled. Must be called from a running event loop.
        """
        delay = self._exponential_delay(retry_count)
        self.waiting_time += delay
        self._record_stat("backoffs")

        if self._backoff_timer is not None and not self._backoff_timer.done:
            self._backoff_timer.cancel()

        logger.info(
            "Backing off after throttling",
            retry_count=retry_count,
            delay_ms=delay,
            waiting_time_ms=self.waiting_time,
        )
        self._backoff_timer = BackoffTimer(delay, self._sleep)
        return self._backoff_timer

    @property
    def backoff_timer(self) -> BackoffTimer | None:
        """The most recently scheduled backoff timer, if any."""
        return self._backoff_timer

    def snapshot(self) -> LimiterSnapshot:
        return LimiterSnapshot(
            request_count=self.request_count,
            last_request_time=self.last_request_time,
            waiting_time=self.waiting_time,
            pending=frozenset(self.pending_request_ids),
        )

    def get_stats(self) -> dict[str, int]:
        """Get rate limiter statistics."""
        return dict(self._stats)

    def close(self) -> None:
        """Cancel any outstanding backoff timer."""
        if self._backoff_timer is not None and not self._backoff_timer.done:
            self._backoff_timer.cancel()
