"""
Request Scheduler

Gates every outbound request with two independent limits shared by the
whole run: a maximum number of requests in flight and a minimum spacing
between successive dispatch starts. Failed requests are retried with
exponential backoff; a rate-limit response pauses all dispatch until the
advertised reset time has passed.
"""

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from reddit_archiver.core.base import (
    RateLimitedError,
    SchedulerClosedError,
    TransportError
)
from reddit_archiver.core.config import RequestConfig

T = TypeVar('T')

DEFAULT_RATE_LIMIT_RESET = 300.0  # seconds, when the server gives no hint
RATE_LIMIT_PADDING = 10.0


class Scheduler:
    """
    Run-wide concurrency, spacing, retry and cooldown controller

    Args:
        config: Request settings (max_concurrent, min_time in ms, max_retries)
        clock: Monotonic time source in seconds
        sleep: Coroutine used for all waits
    """

    def __init__(self, config: RequestConfig,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 base_retry_delay: float = 1.0,
                 max_retry_delay: float = 60.0):
        self.logger = logging.getLogger(__name__)
        self.max_concurrent = config.max_concurrent
        self.min_interval = config.min_time / 1000.0
        self.max_retries = config.max_retries
        self.base_retry_delay = base_retry_delay
        self.max_retry_delay = max_retry_delay

        self._clock = clock
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(self.max_concurrent)
        self._dispatch_lock = asyncio.Lock()
        self._next_start = 0.0
        self._cooldown_until = 0.0
        self._in_flight = 0
        self._closed = False

        self.stats = {
            'dispatched': 0,
            'succeeded': 0,
            'retries': 0,
            'rate_limit_hits': 0,
            'failures': 0,
            'max_in_flight': 0
        }

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def cooldown_until(self) -> float:
        return self._cooldown_until

    def is_closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Refuse any further dispatch; requests already in flight finish"""
        if not self._closed:
            self.logger.debug("Scheduler closed")
        self._closed = True

    async def schedule(self, call: Callable[[], Awaitable[T]], description: str = "request") -> T:
        """
        Run call() under the scheduler's limits

        Retryable TransportErrors are retried up to max_retries times.
        RateLimitedError starts the shared cooldown and is retried without
        using up the retry budget. Anything else propagates immediately.
        """
        attempt = 0
        while True:
            self._ensure_open()
            delay = 0.0
            async with self._semaphore:
                await self._wait_for_dispatch_slot()
                self._in_flight += 1
                self.stats['max_in_flight'] = max(self.stats['max_in_flight'], self._in_flight)
                try:
                    result = await call()
                    self.stats['succeeded'] += 1
                    return result
                except RateLimitedError as e:
                    self.stats['rate_limit_hits'] += 1
                    self._start_cooldown(e.reset_seconds, description)
                except TransportError as e:
                    if not e.retryable or attempt >= self.max_retries:
                        self.stats['failures'] += 1
                        raise
                    delay = self._calculate_retry_delay(attempt)
                    attempt += 1
                    self.stats['retries'] += 1
                    self.logger.warning(
                        f"{description} failed ({e}), retry {attempt}/{self.max_retries} in {delay:.1f}s"
                    )
                finally:
                    self._in_flight -= 1

            if delay:
                await self._sleep(delay)

    async def _wait_for_dispatch_slot(self) -> None:
        """Block until both the spacing interval and any cooldown have elapsed"""
        async with self._dispatch_lock:
            while True:
                self._ensure_open()
                now = self._clock()
                start_at = max(self._next_start, self._cooldown_until)
                if now >= start_at:
                    break
                await self._sleep(start_at - now)

            self._next_start = self._clock() + self.min_interval
            self.stats['dispatched'] += 1

    def _start_cooldown(self, reset_seconds: Optional[float], description: str) -> None:
        hint = DEFAULT_RATE_LIMIT_RESET if reset_seconds is None else reset_seconds
        until = self._clock() + hint + RATE_LIMIT_PADDING
        if until > self._cooldown_until:
            self._cooldown_until = until
            self.logger.warning(
                f"Rate limited on {description}; pausing all requests for {hint + RATE_LIMIT_PADDING:.0f}s"
            )

    def _calculate_retry_delay(self, attempt: int) -> float:
        """
        Calculate retry delay with exponential backoff and jitter

        Args:
            attempt: Retry attempt number (0-based)

        Returns:
            Delay in seconds
        """
        delay = self.base_retry_delay * (2 ** attempt)
        delay = min(delay, self.max_retry_delay)

        # +/- 25% jitter
        jitter = delay * 0.25 * (random.random() * 2 - 1)
        return max(0.1, delay + jitter)

    def _ensure_open(self) -> None:
        if self._closed:
            raise SchedulerClosedError("Scheduler is closed")

    def get_stats(self) -> Dict[str, Any]:
        return dict(self.stats, in_flight=self._in_flight)
