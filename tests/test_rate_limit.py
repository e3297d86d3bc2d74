import pytest

from checkin.ledger.errors import RateLimitedError
from checkin.ledger.rate_limit import SlidingWindowRateLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_fourth_attempt_in_window_is_denied_with_cooldown():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_attempts=3, window_seconds=60, clock=clock)

    for _ in range(3):
        assert limiter.check("host").allowed
        clock.now += 5

    decision = limiter.check("host")
    assert not decision.allowed
    assert decision.retry_after == 45.0


def test_attempts_expire_after_window():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_attempts=1, window_seconds=60, clock=clock)
    limiter.hit("host")
    with pytest.raises(RateLimitedError) as exc:
        limiter.hit("host")
    assert exc.value.retry_after == 60.0

    clock.now += 60
    limiter.hit("host")


def test_keys_are_independent_and_resettable():
    limiter = SlidingWindowRateLimiter(max_attempts=1, window_seconds=60, clock=FakeClock())
    limiter.hit("a")
    limiter.hit("b")
    assert not limiter.check("a").allowed
    limiter.reset("a")
    assert limiter.check("a").allowed


def test_invalid_configuration_is_rejected():
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(max_attempts=0)
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(window_seconds=0)


def test_expired_keys_are_dropped():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_attempts=3, window_seconds=60, clock=clock)
    for host in range(1000):
        limiter.check(f"10.0.{host // 256}.{host % 256}")
    assert limiter.tracked_keys == 1000

    clock.now += 3600
    limiter.check("10.1.0.1")

    assert limiter.tracked_keys == 1


def test_sweep_keeps_keys_with_live_attempts():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_attempts=1, window_seconds=60, clock=clock)
    limiter.hit("old")
    clock.now += 30
    limiter.hit("recent")
    clock.now += 40

    limiter.check("new")

    assert limiter.tracked_keys == 2
    assert not limiter.check("recent").allowed
