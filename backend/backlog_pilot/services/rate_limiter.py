"""In-process fixed-window rate limiter.

Best-effort, single-process guard for inbound and outbound call budgets.
Windows live in memory only and vanish on restart.
"""

import asyncio
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RateLimitWindow:
    count: int
    reset_at: int          # epoch ms


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: int          # epoch ms


@dataclass(frozen=True)
class RateLimitBudget:
    """A named limit, e.g. 10 sync calls per minute."""
    limit: int
    window_ms: int


class RateLimiter:
    """Counts calls per key inside fixed windows.

    One instance is shared by the whole process; tests build their own.
    ``check`` is atomic per instance, so two concurrent callers can never
    both be admitted past the limit.
    """

    def __init__(self, clock: Callable[[], int] = _now_ms):
        self._clock = clock
        self._windows: dict[str, RateLimitWindow] = {}
        self._lock = threading.Lock()

    def check(self, key: str, limit: int, window_ms: int) -> RateLimitResult:
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)

            if window is None or window.reset_at <= now:
                window = RateLimitWindow(count=1, reset_at=now + window_ms)
                self._windows[key] = window
            else:
                window.count += 1

            allowed = window.count <= limit
            return RateLimitResult(
                allowed=allowed,
                limit=limit,
                remaining=max(limit - window.count, 0),
                reset_at=window.reset_at,
            )

    def check_budget(self, key: str, budget: RateLimitBudget) -> RateLimitResult:
        return self.check(key, budget.limit, budget.window_ms)

    def retry_after_seconds(self, result: RateLimitResult) -> int:
        """Whole seconds until the window resets (at least 1)."""
        return max(1, math.ceil((result.reset_at - self._clock()) / 1000))

    def sweep(self) -> int:
        """Drop expired windows. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, w in self._windows.items() if w.reset_at <= now]
            for key in expired:
                del self._windows[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)

    async def run_sweeper(self, interval_seconds: float = 60.0) -> None:
        """Background loop that bounds memory. Cancel the task to stop it."""
        while True:
            await asyncio.sleep(interval_seconds)
            removed = self.sweep()
            if removed:
                logger.debug(f"Rate limiter sweep removed {removed} expired windows")
