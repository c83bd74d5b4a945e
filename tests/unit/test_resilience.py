"""Tests for retry policy and rate limiting."""

import threading

from relay.resilience import DEFAULT_POLICY, FixedWindowRateLimiter, RetryPolicy


class Clock:
    """Manually advanced clock in epoch seconds."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


# =============================================================================
# Retry Policy
# =============================================================================


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_backoff_growth(self):
        """Delays double from the initial delay."""
        policy = RetryPolicy(max_retries=3, initial_delay_ms=1000, backoff_multiplier=2)

        assert [policy.get_delay_ms(n) for n in range(3)] == [1000, 2000, 4000]
        assert [policy.get_delay(n) for n in range(3)] == [1.0, 2.0, 4.0]

    def test_should_retry_until_exhausted(self):
        policy = RetryPolicy(max_retries=3, initial_delay_ms=1000)

        assert [policy.should_retry(n) for n in range(5)] == [True, True, True, False, False]
        assert policy.total_attempts == 4

    def test_zero_retries(self):
        policy = RetryPolicy(max_retries=0)
        assert policy.should_retry(0) is False
        assert policy.total_attempts == 1

    def test_defaults(self):
        assert DEFAULT_POLICY.max_retries == 3
        assert DEFAULT_POLICY.initial_delay_ms == 5000
        assert DEFAULT_POLICY.backoff_multiplier == 2.0


# =============================================================================
# Rate Limiter
# =============================================================================


class TestFixedWindowRateLimiter:
    """Tests for FixedWindowRateLimiter."""

    def test_limit_boundary(self):
        """5th call is allowed, 6th is rejected."""
        limiter = FixedWindowRateLimiter(clock=Clock())

        results = [limiter.check("key-1", 5, 60) for _ in range(6)]

        assert [r.allowed for r in results] == [True] * 5 + [False]
        assert [r.remaining for r in results] == [4, 3, 2, 1, 0, 0]

    def test_next_window_resets(self):
        clock = Clock(1000.0)
        limiter = FixedWindowRateLimiter(clock=clock)

        for _ in range(5):
            limiter.check("key-1", 5, 60)
        assert limiter.check("key-1", 5, 60).allowed is False

        clock.now += 60
        result = limiter.check("key-1", 5, 60)

        assert result.allowed is True
        assert result.remaining == 4

    def test_reset_at_is_epoch_millis(self):
        limiter = FixedWindowRateLimiter(clock=Clock(1000.0))

        result = limiter.check("key-1", 5, 60)

        assert result.reset_at == 1_060_000

    def test_subjects_are_independent(self):
        limiter = FixedWindowRateLimiter(clock=Clock())

        for _ in range(2):
            limiter.check("key-1", 2, 60)

        assert limiter.check("key-1", 2, 60).allowed is False
        assert limiter.check("key-2", 2, 60).allowed is True

    def test_sweep_evicts_expired(self):
        clock = Clock(1000.0)
        limiter = FixedWindowRateLimiter(clock=clock)
        limiter.check("key-1", 5, 60)
        assert len(limiter) == 1

        assert limiter.sweep() == 0

        clock.now += 61
        assert limiter.sweep() == 1
        assert len(limiter) == 0

    def test_concurrent_checks_never_exceed_limit(self):
        """Read-and-increment is atomic across threads."""
        limiter = FixedWindowRateLimiter(clock=Clock())
        allowed = []
        lock = threading.Lock()

        def worker():
            for _ in range(25):
                result = limiter.check("shared", 50, 60)
                if result.allowed:
                    with lock:
                        allowed.append(result)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(allowed) == 50

    def test_start_stop_releases_state(self):
        limiter = FixedWindowRateLimiter(sweep_interval=0.01, clock=Clock())
        limiter.start()
        limiter.check("key-1", 5, 60)

        limiter.stop()

        assert len(limiter) == 0
        assert limiter._sweeper is None
