"""
Tests for the fixed-window rate limiter
"""
import asyncio
import threading

import pytest

from backlog_pilot.services.rate_limiter import RateLimitBudget, RateLimiter
from tests.conftest import FakeClock


class TestRateLimiterWindows:
    """Counting within and across windows"""

    def test_first_call_opens_window(self):
        clock = FakeClock(10_000)
        limiter = RateLimiter(clock=clock)

        result = limiter.check("k", 3, 60_000)

        assert result.allowed
        assert result.remaining == 2
        assert result.reset_at == 70_000

    def test_calls_over_limit_are_refused(self):
        limiter = RateLimiter(clock=FakeClock(0))
        results = [limiter.check("k", 3, 1000) for _ in range(5)]

        assert [r.allowed for r in results] == [True, True, True, False, False]
        assert results[-1].remaining == 0

    def test_window_resets_after_expiry(self):
        clock = FakeClock(0)
        limiter = RateLimiter(clock=clock)
        for _ in range(3):
            limiter.check("k", 2, 1000)

        clock.advance(1000)
        result = limiter.check("k", 2, 1000)

        assert result.allowed
        assert result.remaining == 1
        assert result.reset_at == 2000

    def test_keys_are_independent(self):
        limiter = RateLimiter(clock=FakeClock(0))
        limiter.check("a", 1, 1000)

        assert not limiter.check("a", 1, 1000).allowed
        assert limiter.check("b", 1, 1000).allowed

    def test_check_budget_uses_budget_values(self):
        limiter = RateLimiter(clock=FakeClock(0))
        budget = RateLimitBudget(limit=1, window_ms=5000)

        first = limiter.check_budget("k", budget)
        second = limiter.check_budget("k", budget)

        assert first.allowed and first.reset_at == 5000
        assert not second.allowed

    def test_retry_after_rounds_up_and_is_at_least_one(self):
        clock = FakeClock(0)
        limiter = RateLimiter(clock=clock)
        result = limiter.check("k", 1, 10_000)

        clock.advance(8_500)
        assert limiter.retry_after_seconds(result) == 2

        clock.advance(1_500)
        assert limiter.retry_after_seconds(result) == 1

    def test_concurrent_checks_never_exceed_limit(self):
        limiter = RateLimiter()
        allowed = []

        def worker():
            for _ in range(50):
                allowed.append(limiter.check("shared", 100, 60_000).allowed)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert allowed.count(True) == 100


class TestRateLimiterSweep:
    """Expired windows are dropped"""

    def test_sweep_removes_only_expired(self):
        clock = FakeClock(0)
        limiter = RateLimiter(clock=clock)
        limiter.check("short", 5, 1000)
        limiter.check("long", 5, 10_000)

        clock.advance(1000)
        removed = limiter.sweep()

        assert removed == 1
        assert len(limiter) == 1

    async def test_run_sweeper_cancels_cleanly(self):
        limiter = RateLimiter(clock=FakeClock(0))
        limiter.check("k", 1, 0)

        task = asyncio.create_task(limiter.run_sweeper(0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(limiter) == 0
