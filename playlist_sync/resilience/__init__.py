"""Error classification, retry backoff and circuit breaking for remote calls."""

from playlist_sync.resilience.circuit import CircuitBreaker, CircuitSnapshot, CircuitState
from playlist_sync.resilience.classification import (
    BREAKER_NEUTRAL_KINDS,
    STRATEGY_TABLE,
    RecoveryStrategy,
    classify_error,
    is_recoverable,
    strategy_for,
)
from playlist_sync.resilience.layer import RecoveryResult, ResilienceLayer
from playlist_sync.resilience.retry import (
    DEFAULT_RATE_LIMIT_WAIT,
    MAX_JITTER,
    RetryPolicy,
    compute_backoff,
    rate_limit_delay,
)

__all__ = [
    "BREAKER_NEUTRAL_KINDS",
    "CircuitBreaker",
    "CircuitSnapshot",
    "CircuitState",
    "DEFAULT_RATE_LIMIT_WAIT",
    "MAX_JITTER",
    "RecoveryResult",
    "RecoveryStrategy",
    "ResilienceLayer",
    "RetryPolicy",
    "STRATEGY_TABLE",
    "classify_error",
    "compute_backoff",
    "is_recoverable",
    "rate_limit_delay",
    "strategy_for",
]
