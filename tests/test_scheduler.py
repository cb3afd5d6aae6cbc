"""
Tests for the request scheduler

Uses a fake clock so spacing, cooldown and backoff are checked
deterministically.
"""

import asyncio

import pytest

from conftest import FakeClock
from reddit_archiver.core.base import (
    AuthRequiredError,
    NetworkError,
    RateLimitedError,
    SchedulerClosedError,
    ServerError
)
from reddit_archiver.core.config import RequestConfig
from reddit_archiver.core.scheduler import RATE_LIMIT_PADDING, Scheduler


def make_scheduler(clock: FakeClock, **overrides) -> Scheduler:
    config = RequestConfig(**overrides)
    return Scheduler(config, clock=clock, sleep=clock.sleep)


class TestScheduler:
    """Test suite for Scheduler"""

    @pytest.mark.asyncio
    async def test_concurrency_and_spacing_over_100_requests(self, fake_clock):
        scheduler = make_scheduler(fake_clock, max_concurrent=10, min_time=200)
        starts = []
        state = {'in_flight': 0, 'peak': 0}

        async def call():
            starts.append(fake_clock())
            state['in_flight'] += 1
            state['peak'] = max(state['peak'], state['in_flight'])
            await fake_clock.sleep(1.5)
            state['in_flight'] -= 1
            return True

        results = await asyncio.gather(*(scheduler.schedule(call) for _ in range(100)))

        assert all(results)
        assert len(starts) == 100
        assert state['peak'] <= 10
        assert scheduler.stats['max_in_flight'] <= 10
        gaps = [b - a for a, b in zip(starts, starts[1:])]
        assert min(gaps) >= 0.2 - 1e-9

    @pytest.mark.asyncio
    async def test_retries_retryable_errors(self, fake_clock):
        scheduler = make_scheduler(fake_clock, max_retries=3, min_time=0)
        attempts = []

        async def call():
            attempts.append(fake_clock())
            if len(attempts) < 3:
                raise ServerError("HTTP 503", status=503)
            return "ok"

        assert await scheduler.schedule(call) == "ok"
        assert len(attempts) == 3
        assert scheduler.stats['retries'] == 2
        # backoff waited between attempts
        assert attempts[1] > attempts[0]
        assert attempts[2] - attempts[1] > attempts[1] - attempts[0] - 1.0

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, fake_clock):
        scheduler = make_scheduler(fake_clock, max_retries=2, min_time=0)
        attempts = []

        async def call():
            attempts.append(1)
            raise NetworkError("connection reset")

        with pytest.raises(NetworkError):
            await scheduler.schedule(call)
        assert len(attempts) == 3
        assert scheduler.stats['failures'] == 1

    @pytest.mark.asyncio
    async def test_non_retryable_errors_raise_immediately(self, fake_clock):
        scheduler = make_scheduler(fake_clock, max_retries=3, min_time=0)
        attempts = []

        async def unauthorized():
            attempts.append(1)
            raise AuthRequiredError("HTTP 403", status=403)

        async def not_found():
            attempts.append(1)
            raise ServerError("HTTP 404", status=404, retryable=False)

        with pytest.raises(AuthRequiredError):
            await scheduler.schedule(unauthorized)
        with pytest.raises(ServerError):
            await scheduler.schedule(not_found)
        assert len(attempts) == 2
        assert scheduler.stats['retries'] == 0

    @pytest.mark.asyncio
    async def test_rate_limit_pauses_all_dispatch(self, fake_clock):
        scheduler = make_scheduler(fake_clock, max_retries=0, min_time=0)
        t0 = fake_clock()
        starts = {'a': [], 'b': []}

        async def limited():
            starts['a'].append(fake_clock())
            if len(starts['a']) == 1:
                raise RateLimitedError("429", reset_seconds=5)
            return "a"

        async def other():
            starts['b'].append(fake_clock())
            return "b"

        first = asyncio.ensure_future(scheduler.schedule(limited))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        second = asyncio.ensure_future(scheduler.schedule(other))

        assert await first == "a"
        assert await second == "b"
        # rate-limited attempts do not use the retry budget (max_retries=0)
        assert len(starts['a']) == 2
        cooldown_end = t0 + 5 + RATE_LIMIT_PADDING
        assert starts['a'][1] >= cooldown_end
        assert starts['b'][0] >= cooldown_end
        assert scheduler.stats['rate_limit_hits'] == 1

    @pytest.mark.asyncio
    async def test_rate_limit_without_hint_uses_default(self, fake_clock):
        scheduler = make_scheduler(fake_clock, min_time=0)
        t0 = fake_clock()
        starts = []

        async def call():
            starts.append(fake_clock())
            if len(starts) == 1:
                raise RateLimitedError("429")
            return True

        await scheduler.schedule(call)
        assert starts[1] - t0 >= 300 + RATE_LIMIT_PADDING

    @pytest.mark.asyncio
    async def test_closed_scheduler_rejects_work(self, fake_clock):
        scheduler = make_scheduler(fake_clock)
        scheduler.close()

        async def call():
            return True

        with pytest.raises(SchedulerClosedError):
            await scheduler.schedule(call)

    def test_retry_delay_grows_and_is_capped(self):
        scheduler = Scheduler(RequestConfig(), base_retry_delay=1.0, max_retry_delay=8.0)

        for attempt, expected in [(0, 1.0), (1, 2.0), (2, 4.0), (3, 8.0), (6, 8.0)]:
            delay = scheduler._calculate_retry_delay(attempt)
            assert expected * 0.75 <= delay <= expected * 1.25
