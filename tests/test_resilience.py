"""Test error classification, backoff and the circuit breaker"""

import asyncio

import aiohttp
import pytest

from playlist_sync.core.config import CircuitBreakerConfig
from playlist_sync.core.exceptions import (
    AuthenticationError,
    CircuitOpenError,
    ConcurrentSyncError,
    ErrorKind,
    NetworkError,
    QuotaExceededError,
    RateLimitError,
    SyncConflictError,
    ValidationError,
)
from playlist_sync.resilience.circuit import CircuitBreaker, CircuitState
from playlist_sync.resilience.classification import (
    RecoveryStrategy,
    STRATEGY_TABLE,
    classify_error,
    is_recoverable,
    strategy_for,
)
from playlist_sync.resilience.retry import RetryPolicy, compute_backoff, rate_limit_delay


class TestClassification:
    """Test classify_error() and the strategy table"""

    @pytest.mark.parametrize("error, kind", [
        (NetworkError("down"), ErrorKind.NETWORK),
        (RateLimitError(retry_after=5), ErrorKind.RATE_LIMITED),
        (AuthenticationError("expired"), ErrorKind.AUTHENTICATION),
        (SyncConflictError("conflict"), ErrorKind.CONFLICT),
        (QuotaExceededError(100, 100, 1), ErrorKind.QUOTA_EXHAUSTED),
        (ValidationError("bad"), ErrorKind.VALIDATION),
        (CircuitOpenError("remote", 10.0), ErrorKind.CIRCUIT_OPEN),
        (ConcurrentSyncError("PL1"), ErrorKind.CONCURRENT_SYNC),
        (aiohttp.ClientConnectionError(), ErrorKind.NETWORK),
        (asyncio.TimeoutError(), ErrorKind.NETWORK),
        (ConnectionResetError(), ErrorKind.NETWORK),
        (KeyError("x"), ErrorKind.UNCLASSIFIED),
    ])
    def test_classify(self, error, kind):
        assert classify_error(error) is kind

    def test_strategies(self):
        assert strategy_for(ErrorKind.NETWORK) is RecoveryStrategy.RETRY
        assert strategy_for(ErrorKind.RATE_LIMITED) is RecoveryStrategy.WAIT_AND_RETRY
        assert strategy_for(ErrorKind.AUTHENTICATION) is RecoveryStrategy.REFRESH_AND_RETRY
        assert strategy_for(ErrorKind.CONFLICT) is RecoveryStrategy.RESOLVE_AND_RETRY
        assert strategy_for(ErrorKind.QUOTA_EXHAUSTED) is RecoveryStrategy.FAIL
        assert strategy_for(ErrorKind.VALIDATION) is RecoveryStrategy.FAIL
        assert strategy_for(ErrorKind.CIRCUIT_OPEN) is RecoveryStrategy.FAIL

    def test_every_kind_has_a_strategy(self):
        assert set(STRATEGY_TABLE) == set(ErrorKind)

    def test_is_recoverable(self):
        assert is_recoverable(NetworkError("down"))
        assert not is_recoverable(QuotaExceededError(1, 1, 1))


class TestBackoff:
    """Test backoff delay bounds"""

    @pytest.mark.parametrize("attempt", [1, 2, 3, 4, 5, 6, 7])
    @pytest.mark.parametrize("jitter", [0.0, 0.5, 0.999999])
    def test_delay_within_bounds(self, attempt, jitter):
        """delay lies in [base, base * 1.3], capped at max_delay"""
        policy = RetryPolicy(max_attempts=8, initial_delay=1.0, max_delay=30.0, multiplier=2.0)
        base = 1.0 * 2.0 ** (attempt - 1)

        delay = compute_backoff(attempt, policy, rng=lambda: jitter)

        assert delay <= 30.0
        assert min(base, 30.0) <= delay <= min(base * 1.3, 30.0)

    def test_exact_values(self):
        policy = RetryPolicy()
        assert compute_backoff(1, policy, rng=lambda: 0.0) == 1.0
        assert compute_backoff(3, policy, rng=lambda: 0.0) == 4.0
        assert compute_backoff(2, policy, rng=lambda: 0.5) == pytest.approx(2.3)
        assert compute_backoff(10, policy, rng=lambda: 0.0) == 30.0

    def test_rate_limit_delay(self):
        policy = RetryPolicy(max_delay=30.0)
        assert rate_limit_delay(5.0, policy) == 5.0
        assert rate_limit_delay(120.0, policy) == 30.0
        assert rate_limit_delay(None, policy) == 30.0
        assert rate_limit_delay(None, RetryPolicy(max_delay=100.0)) == 60.0


class TestCircuitBreaker:
    """Test circuit breaker state transitions"""

    @pytest.fixture
    def config(self):
        return CircuitBreakerConfig(failure_threshold=3, success_threshold=2, open_timeout=60.0)

    def test_opens_after_threshold(self, config, clock):
        breaker = CircuitBreaker(config, clock=clock.monotonic)

        for _ in range(2):
            assert breaker.allow_request()
            breaker.record_failure()
        assert breaker.state is CircuitState.CLOSED

        breaker.record_failure()
        assert breaker.state is CircuitState.OPEN
        assert not breaker.allow_request()
        assert breaker.retry_in() == pytest.approx(60.0)

    def test_success_resets_failure_count(self, config, clock):
        breaker = CircuitBreaker(config, clock=clock.monotonic)

        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()

        assert breaker.state is CircuitState.CLOSED
        assert breaker.snapshot().consecutive_failures == 1

    def test_half_open_admits_one_trial(self, config, clock):
        breaker = CircuitBreaker(config, clock=clock.monotonic)
        for _ in range(3):
            breaker.record_failure()

        clock.advance(59.0)
        assert not breaker.allow_request()

        clock.advance(1.0)
        assert breaker.allow_request()
        assert breaker.state is CircuitState.HALF_OPEN
        assert not breaker.allow_request()

    def test_half_open_closes_after_successes(self, config, clock):
        breaker = CircuitBreaker(config, clock=clock.monotonic)
        for _ in range(3):
            breaker.record_failure()
        clock.advance(60.0)

        assert breaker.allow_request()
        breaker.record_success()
        assert breaker.state is CircuitState.HALF_OPEN

        assert breaker.allow_request()
        breaker.record_success()
        assert breaker.state is CircuitState.CLOSED
        assert breaker.allow_request()

    def test_half_open_failure_reopens(self, config, clock):
        breaker = CircuitBreaker(config, clock=clock.monotonic)
        for _ in range(3):
            breaker.record_failure()
        clock.advance(60.0)

        assert breaker.allow_request()
        breaker.record_failure()

        assert breaker.state is CircuitState.OPEN
        assert not breaker.allow_request()
        clock.advance(60.0)
        assert breaker.allow_request()

    def test_release_frees_trial_slot(self, config, clock):
        breaker = CircuitBreaker(config, clock=clock.monotonic)
        for _ in range(3):
            breaker.record_failure()
        clock.advance(60.0)

        assert breaker.allow_request()
        breaker.release()
        assert breaker.state is CircuitState.HALF_OPEN
        assert breaker.allow_request()

    def test_reset(self, config, clock):
        breaker = CircuitBreaker(config, clock=clock.monotonic)
        for _ in range(3):
            breaker.record_failure()

        breaker.reset()

        assert breaker.state is CircuitState.CLOSED
        assert breaker.allow_request()
