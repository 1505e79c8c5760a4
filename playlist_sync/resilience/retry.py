"""
Retry policy and backoff delay computation.

For attempt k (1-indexed):

    delay = min(initial_delay * multiplier**(k-1) * (1 + jitter), max_delay)

with jitter drawn uniformly from [0, 0.3). Rate-limited attempts wait the
server's Retry-After hint instead, capped at max_delay.
"""

import random
from dataclasses import dataclass
from typing import Callable

from playlist_sync.core.config import RetryConfig


MAX_JITTER = 0.3

# Wait used when a rate-limit response carries no Retry-After hint
DEFAULT_RATE_LIMIT_WAIT = 60.0


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and delay bounds, in seconds."""
    max_attempts: int = 5
    initial_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            initial_delay=config.initial_delay,
            max_delay=config.max_delay,
            multiplier=config.multiplier,
        )

    def base_delay(self, attempt: int) -> float:
        """Delay before jitter for the given 1-indexed attempt."""
        return self.initial_delay * self.multiplier ** (max(attempt, 1) - 1)


def compute_backoff(
    attempt: int,
    policy: RetryPolicy,
    rng: Callable[[], float] = random.random
) -> float:
    """
    Backoff delay after failed attempt `attempt`.

    Args:
        attempt: 1-indexed attempt number that just failed.
        policy: Delay bounds.
        rng: Returns a float in [0, 1); scaled to the jitter range.

    Returns:
        Seconds to wait, in [base, base * 1.3) and never above max_delay.
    """
    jitter = rng() * MAX_JITTER
    return min(policy.base_delay(attempt) * (1 + jitter), policy.max_delay)


def rate_limit_delay(retry_after: float | None, policy: RetryPolicy) -> float:
    """Wait exactly the server hint (default 60s), capped at max_delay."""
    hint = DEFAULT_RATE_LIMIT_WAIT if retry_after is None else max(retry_after, 0.0)
    return min(hint, policy.max_delay)
