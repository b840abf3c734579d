from config import get_settings
from rate_limit import InMemoryRateLimiter, RateLimitRule, rules_from_settings


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


RULE = RateLimitRule(name="test", window_secs=60, max_requests=3, message="slow down")


def test_requests_over_the_limit_are_rejected_until_the_window_resets() -> None:
    clock = FakeClock()
    limiter = InMemoryRateLimiter(clock=clock)

    assert all(limiter.hit("1.2.3.4", RULE).allowed for _ in range(3))
    blocked = limiter.hit("1.2.3.4", RULE)
    assert not blocked.allowed
    assert blocked.retry_after == 60

    clock.now += 45
    assert limiter.hit("1.2.3.4", RULE).retry_after == 15

    clock.now += 15
    assert limiter.hit("1.2.3.4", RULE).allowed


def test_keys_and_rules_are_counted_separately() -> None:
    limiter = InMemoryRateLimiter(clock=FakeClock())
    other_rule = RateLimitRule(name="other", window_secs=60, max_requests=1, message="")

    for _ in range(3):
        limiter.hit("a", RULE)
    assert not limiter.hit("a", RULE).allowed
    assert limiter.hit("b", RULE).allowed
    assert limiter.hit("a", other_rule).allowed


def test_prune_drops_expired_windows() -> None:
    clock = FakeClock()
    limiter = InMemoryRateLimiter(clock=clock)
    limiter.hit("a", RULE)
    clock.now += 30
    limiter.hit("b", RULE)
    assert len(limiter) == 2

    clock.now += 31
    assert limiter.prune() == 1
    assert len(limiter) == 1


def test_default_rules() -> None:
    rules = rules_from_settings(get_settings())
    assert (rules.auth.max_requests, rules.auth.window_secs) == (5, 900)
    assert (rules.api.max_requests, rules.api.window_secs) == (100, 900)
    assert (rules.expense.max_requests, rules.expense.window_secs) == (30, 60)
