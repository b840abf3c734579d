"""Fixed-window request counters keyed by caller identity.

Handlers depend on the ``RateLimiter`` protocol only. ``InMemoryRateLimiter``
keeps its counters in process memory, so it resets on restart and is only
correct for a single-process deployment; a shared-store implementation can be
placed on ``app.state.rate_limiter`` instead.
"""

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from config import Settings


@dataclass(frozen=True)
class RateLimitRule:
    name: str
    window_secs: int
    max_requests: int
    message: str


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: int = 0


class RateLimiter(Protocol):
    def hit(self, key: str, rule: RateLimitRule) -> RateLimitDecision: ...

    def prune(self) -> int: ...


@dataclass
class _Window:
    count: int
    reset_at: float


class InMemoryRateLimiter:
    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, rule: RateLimitRule) -> RateLimitDecision:
        now = self._clock()
        bucket = f"{rule.name}:{key}"
        with self._lock:
            window = self._windows.get(bucket)
            if window is None or window.reset_at <= now:
                self._windows[bucket] = _Window(count=1, reset_at=now + rule.window_secs)
                return RateLimitDecision(allowed=True)
            if window.count >= rule.max_requests:
                retry_after = max(1, math.ceil(window.reset_at - now))
                return RateLimitDecision(allowed=False, retry_after=retry_after)
            window.count += 1
            return RateLimitDecision(allowed=True)

    def prune(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, w in self._windows.items() if w.reset_at <= now]
            for key in expired:
                del self._windows[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)


@dataclass(frozen=True)
class RateLimitRules:
    auth: RateLimitRule
    api: RateLimitRule
    expense: RateLimitRule


def rules_from_settings(settings: Settings) -> RateLimitRules:
    return RateLimitRules(
        auth=RateLimitRule(
            name="auth",
            window_secs=settings.auth_rate_window_secs,
            max_requests=settings.auth_rate_limit,
            message="Too many authentication attempts, please try again later.",
        ),
        api=RateLimitRule(
            name="api",
            window_secs=settings.api_rate_window_secs,
            max_requests=settings.api_rate_limit,
            message="Too many requests from this IP, please try again later.",
        ),
        expense=RateLimitRule(
            name="expense",
            window_secs=settings.expense_rate_window_secs,
            max_requests=settings.expense_rate_limit,
            message="Too many requests, please slow down.",
        ),
    )
