"""Tests for the fixed-window rate limiter and the two-tier check."""

from __future__ import annotations

import threading

import pytest

from app.pipeline.errors import RateLimitExceeded
from app.pipeline.rate_limits import (
    GLOBAL_IDENTITY,
    FixedWindowRateLimiter,
    check_rate_limit,
)
from tests.test_constants import TEST_IDENTITY, TEST_OTHER_IDENTITY
from tests.factories import make_settings


class FakeClock:
    def __init__(self, now_ms: int = 1_700_000_040_000) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock: FakeClock) -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(clock=clock)


class TestAllow:
    def test_admits_exactly_max_requests(self, limiter):
        decisions = [limiter.allow(TEST_IDENTITY, "generate", 60_000, 3) for _ in range(4)]
        assert [d.allowed for d in decisions] == [True, True, True, False]
        assert [d.count for d in decisions] == [1, 2, 3, 3]

    def test_rejection_does_not_increment(self, limiter):
        for _ in range(5):
            decision = limiter.allow(TEST_IDENTITY, "generate", 60_000, 1)
        assert decision.count == 1

    def test_fresh_window_after_reset_time(self, limiter, clock):
        for _ in range(3):
            limiter.allow(TEST_IDENTITY, "generate", 60_000, 3)
        blocked = limiter.allow(TEST_IDENTITY, "generate", 60_000, 3)
        assert not blocked.allowed

        clock.now_ms = blocked.reset_time_ms + 1
        again = limiter.allow(TEST_IDENTITY, "generate", 60_000, 3)
        assert again.allowed
        assert again.count == 1

    def test_reset_time_is_now_plus_window_for_new_bucket(self, limiter, clock):
        decision = limiter.allow(TEST_IDENTITY, "generate", 60_000, 3)
        assert decision.reset_time_ms == clock.now_ms + 60_000
        assert decision.reset_time.timestamp() == pytest.approx((clock.now_ms + 60_000) / 1000)

    def test_keys_are_per_identity_and_operation(self, limiter):
        assert limiter.allow(TEST_IDENTITY, "generate", 60_000, 1).allowed
        assert not limiter.allow(TEST_IDENTITY, "generate", 60_000, 1).allowed
        assert limiter.allow(TEST_OTHER_IDENTITY, "generate", 60_000, 1).allowed
        assert limiter.allow(TEST_IDENTITY, "analysis_run", 60_000, 1).allowed

    def test_window_boundary_burst_is_allowed(self, limiter, clock):
        # Bucket index changes at the boundary, so a burst on each side is admitted
        clock.now_ms = 60_000 * 1000 - 1
        assert all(limiter.allow(TEST_IDENTITY, "op", 60_000, 2).allowed for _ in range(2))
        clock.advance(2)
        assert all(limiter.allow(TEST_IDENTITY, "op", 60_000, 2).allowed for _ in range(2))

    @pytest.mark.parametrize(("window_ms", "max_requests"), [(999, 1), (3_600_001, 1), (1000, 0), (1000, 1001)])
    def test_rejects_out_of_range_parameters(self, limiter, window_ms, max_requests):
        with pytest.raises(ValueError):
            limiter.allow(TEST_IDENTITY, "op", window_ms, max_requests)

    def test_expired_windows_are_purged(self, limiter, clock):
        limiter.allow(TEST_IDENTITY, "op", 1000, 5)
        limiter.allow(TEST_OTHER_IDENTITY, "op", 1000, 5)
        assert len(limiter) == 2
        clock.advance(5000)
        assert limiter.purge_expired() == 2
        assert len(limiter) == 0

    def test_reset_single_identity(self, limiter):
        limiter.allow(TEST_IDENTITY, "op", 60_000, 1)
        limiter.allow(TEST_OTHER_IDENTITY, "op", 60_000, 1)
        limiter.reset(TEST_IDENTITY)
        assert limiter.allow(TEST_IDENTITY, "op", 60_000, 1).allowed
        assert not limiter.allow(TEST_OTHER_IDENTITY, "op", 60_000, 1).allowed

    def test_reset_all(self, limiter):
        limiter.allow(TEST_IDENTITY, "op", 60_000, 1)
        limiter.reset()
        assert len(limiter) == 0

    def test_concurrent_callers_never_exceed_limit(self):
        limiter = FixedWindowRateLimiter(clock=lambda: 1_000_000)
        admitted = []
        lock = threading.Lock()

        def worker():
            for _ in range(50):
                if limiter.allow(TEST_IDENTITY, "op", 60_000, 100).allowed:
                    with lock:
                        admitted.append(1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(admitted) == 100


class TestCheckRateLimit:
    def test_identity_tier(self, limiter):
        settings = make_settings(identity_rate_limit_max_requests=2)
        check_rate_limit(limiter, TEST_IDENTITY, "generate", settings)
        check_rate_limit(limiter, TEST_IDENTITY, "generate", settings)
        with pytest.raises(RateLimitExceeded) as exc_info:
            check_rate_limit(limiter, TEST_IDENTITY, "generate", settings)
        assert exc_info.value.scope == "identity"
        assert exc_info.value.identity == TEST_IDENTITY

    def test_global_tier_checked_first(self, limiter):
        settings = make_settings(global_rate_limit_max_requests=2, identity_rate_limit_max_requests=10)
        check_rate_limit(limiter, TEST_IDENTITY, "generate", settings)
        check_rate_limit(limiter, TEST_OTHER_IDENTITY, "generate", settings)
        with pytest.raises(RateLimitExceeded) as exc_info:
            check_rate_limit(limiter, "someone-else", "generate", settings)
        assert exc_info.value.scope == "global"
        # Identity tier was never consulted for the rejected caller
        assert limiter.allow("someone-else", "generate", 60_000, 1).count == 1

    def test_global_rejection_does_not_consume_identity_quota(self, limiter):
        settings = make_settings(global_rate_limit_max_requests=1, identity_rate_limit_max_requests=1)
        check_rate_limit(limiter, TEST_IDENTITY, "generate", settings)
        with pytest.raises(RateLimitExceeded):
            check_rate_limit(limiter, TEST_OTHER_IDENTITY, "generate", settings)
        assert limiter.allow(TEST_OTHER_IDENTITY, "generate", 60_000, 1).allowed

    def test_global_bucket_uses_reserved_identity(self, limiter):
        settings = make_settings(global_rate_limit_max_requests=1)
        check_rate_limit(limiter, TEST_IDENTITY, "generate", settings)
        assert not limiter.allow(GLOBAL_IDENTITY, "generate", 60_000, 1).allowed

    def test_disabled_tiers(self, limiter):
        settings = make_settings(global_rate_limit_max_requests=0, identity_rate_limit_max_requests=0)
        for _ in range(20):
            assert check_rate_limit(limiter, TEST_IDENTITY, "generate", settings) is None
        assert len(limiter) == 0
