import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Hashable, Optional


BUDGET_ALERTS_CRON = "0 */6 * * *"
RECURRING_SCAN_CRON = "0 0 * * *"
MONTHLY_REPORTS_CRON = "0 0 1 * *"


@dataclass(frozen=True)
class RateLimit:
    limit: int
    period_secs: float


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 2
    base_delay_secs: float = 1.0

    def delay_for(self, attempt: int) -> float:
        return self.base_delay_secs * (2**attempt)

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts


@dataclass
class Job:
    """A unit of background work and the policies its host must apply.

    ``cron`` is a crontab expression for periodic jobs and ``None`` for jobs
    triggered by published work items.
    """

    name: str
    handler: Callable[..., object]
    cron: Optional[str] = None
    rate_limit: Optional[RateLimit] = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    @property
    def is_periodic(self) -> bool:
        return self.cron is not None


class SlidingWindowRateLimiter:
    def __init__(
        self, limit: int, period_secs: float, clock: Callable[[], float] = time.monotonic
    ) -> None:
        if limit <= 0:
            raise ValueError("Rate limit must be positive")
        self.limit = limit
        self.period_secs = period_secs
        self._clock = clock
        self._hits: dict[Hashable, deque[float]] = {}
        self._last_sweep = clock()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._hits)

    def _expire(self, hits: deque[float], now: float) -> None:
        while hits and now - hits[0] >= self.period_secs:
            hits.popleft()

    def _sweep(self, now: float) -> None:
        for key in list(self._hits):
            self._expire(self._hits[key], now)
            if not self._hits[key]:
                del self._hits[key]
        self._last_sweep = now

    def reserve(self, key: Hashable) -> float:
        """Take a slot for ``key`` and return 0, or return the seconds until one frees."""
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self.period_secs:
                self._sweep(now)
            hits = self._hits.setdefault(key, deque())
            self._expire(hits, now)
            if len(hits) < self.limit:
                hits.append(now)
                return 0.0
            return self.period_secs - (now - hits[0])
