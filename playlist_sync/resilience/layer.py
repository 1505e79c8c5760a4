"""
Resilience layer: circuit breaker + classifying retry loop.

execute() never raises for a failing operation. It returns a
RecoveryResult describing the outcome, so expected failures travel up to
the orchestrator as values:

    1. Ask the breaker. If the circuit is open the operation is not invoked
       and the result carries ErrorKind.CIRCUIT_OPEN with zero attempts.
    2. Run attempts 1..max_attempts. Each outcome is reported to the
       breaker (except kinds that say nothing about the dependency, such
       as a rejected quota reservation).
    3. On failure, classify the error, look up its strategy and carry it
       out: backoff, wait the rate-limit hint, refresh credentials, resolve
       the conflict, or stop.
    4. Before each retry the breaker is asked again; a circuit that opened
       mid-loop ends the loop.

Usage:
    layer = ResilienceLayer(
        RetryPolicy.from_config(config.retry),
        CircuitBreaker(config.circuit_breaker, name="youtube"),
        credential_refresher=client.refresh_credentials,
    )
    result = await layer.execute(lambda: client.get_membership_page(pid), {"op": "page"})
    if result.success:
        page = result.value
"""

import asyncio
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from playlist_sync.core.exceptions import CircuitOpenError, ErrorKind, RateLimitError
from playlist_sync.core.logger import get_logger
from playlist_sync.resilience.circuit import CircuitBreaker
from playlist_sync.resilience.classification import (
    BREAKER_NEUTRAL_KINDS,
    RecoveryStrategy,
    classify_error,
    strategy_for,
)
from playlist_sync.resilience.retry import RetryPolicy, compute_backoff, rate_limit_delay


logger = get_logger(__name__)


Operation = Callable[[], Awaitable[Any]]
CredentialRefresher = Callable[[], Awaitable[None]]
ConflictResolver = Callable[[BaseException, dict[str, Any]], Awaitable[None]]


@dataclass(frozen=True)
class RecoveryResult:
    """
    Outcome of a resilient call.

    Attributes:
        success: True if some attempt returned.
        value: What the operation returned (None on failure).
        error: Last error seen (None on success).
        kind: ErrorKind of `error` (None on success).
        strategy: Strategy applied to the last failure, or None.
        attempts: Operation invocations made (0 if the circuit was open).
        elapsed: Wall-clock seconds spent, including waits.
    """
    success: bool
    value: Any = None
    error: BaseException | None = None
    kind: ErrorKind | None = None
    strategy: RecoveryStrategy | None = None
    attempts: int = 0
    elapsed: float = 0.0

    def unwrap(self) -> Any:
        """Return the value, or raise the captured error."""
        if self.success:
            return self.value
        raise self.error


class ResilienceLayer:
    """
    Wraps remote operations with a circuit breaker and a retry loop.

    Args:
        policy: Attempt budget and delay bounds.
        breaker: Breaker for the guarded dependency (one per dependency).
        credential_refresher: Awaited on AUTHENTICATION failures.
        conflict_resolver: Awaited with (error, context) on CONFLICT failures.
        sleep: Awaitable sleep; injectable for tests.
        rng: Jitter source returning floats in [0, 1).
        on_attempt_failed: Called with (attempt, error, kind) after each failed attempt.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        breaker: CircuitBreaker,
        credential_refresher: CredentialRefresher | None = None,
        conflict_resolver: ConflictResolver | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
        on_attempt_failed: Callable[[int, BaseException, ErrorKind], None] | None = None
    ) -> None:
        self.policy = policy
        self.breaker = breaker
        self.credential_refresher = credential_refresher
        self.conflict_resolver = conflict_resolver
        self._sleep = sleep
        self._rng = rng
        self._on_attempt_failed = on_attempt_failed

    async def execute(
        self,
        operation: Operation,
        context: dict[str, Any] | None = None
    ) -> RecoveryResult:
        context = context or {}
        started = time.monotonic()

        if not self.breaker.allow_request():
            error = CircuitOpenError(self.breaker.name, self.breaker.retry_in())
            logger.warning(f"{error.message} ({_describe(context)})")
            return RecoveryResult(
                success=False,
                error=error,
                kind=ErrorKind.CIRCUIT_OPEN,
                strategy=RecoveryStrategy.FAIL,
                attempts=0,
                elapsed=time.monotonic() - started,
            )

        last_error: BaseException | None = None
        last_kind: ErrorKind | None = None
        strategy: RecoveryStrategy | None = None
        attempt = 0

        while attempt < self.policy.max_attempts:
            attempt += 1
            try:
                value = await operation()
            except Exception as e:
                last_error = e
                last_kind = classify_error(e)
                strategy = strategy_for(last_kind)

                if last_kind in BREAKER_NEUTRAL_KINDS:
                    self.breaker.release()
                else:
                    self.breaker.record_failure()

                if self._on_attempt_failed is not None:
                    self._on_attempt_failed(attempt, e, last_kind)

                logger.warning(
                    f"Attempt {attempt}/{self.policy.max_attempts} failed "
                    f"({last_kind.value}, strategy {strategy.value}): {e} ({_describe(context)})"
                )

                if strategy is RecoveryStrategy.FAIL or attempt >= self.policy.max_attempts:
                    break

                if not await self._recover(strategy, e, attempt, context):
                    break

                if not self.breaker.allow_request():
                    logger.warning(
                        f"Circuit '{self.breaker.name}' opened during retries; giving up "
                        f"({_describe(context)})"
                    )
                    break
                continue
            except BaseException:
                # Cancelled mid-call: no outcome to record, but the trial slot must be freed
                self.breaker.release()
                raise

            self.breaker.record_success()
            if attempt > 1:
                logger.info(f"Recovered after {attempt} attempts ({_describe(context)})")
            return RecoveryResult(
                success=True,
                value=value,
                strategy=strategy,
                attempts=attempt,
                elapsed=time.monotonic() - started,
            )

        logger.error(
            f"Recovery failed after {attempt} attempt(s): {last_error} ({_describe(context)})"
        )
        return RecoveryResult(
            success=False,
            error=last_error,
            kind=last_kind,
            strategy=strategy,
            attempts=attempt,
            elapsed=time.monotonic() - started,
        )

    async def _recover(
        self,
        strategy: RecoveryStrategy,
        error: BaseException,
        attempt: int,
        context: dict[str, Any]
    ) -> bool:
        """
        Carry out a recovery strategy before the next attempt.

        Returns:
            False if recovery itself failed and the loop should stop.
        """
        if strategy is RecoveryStrategy.WAIT_AND_RETRY:
            retry_after = error.retry_after if isinstance(error, RateLimitError) else None
            delay = rate_limit_delay(retry_after, self.policy)
            logger.info(f"Rate limited; waiting {delay:.1f}s before retrying")
            await self._sleep(delay)
            return True

        if strategy is RecoveryStrategy.REFRESH_AND_RETRY:
            if self.credential_refresher is None:
                logger.error("Authentication failed and no credential refresher is configured")
                return False
            try:
                logger.info("Refreshing credentials before retrying")
                await self.credential_refresher()
            except Exception as e:
                logger.error(f"Credential refresh failed: {e}")
                return False

        elif strategy is RecoveryStrategy.RESOLVE_AND_RETRY:
            if self.conflict_resolver is not None:
                try:
                    logger.info(f"Resolving conflict before retrying: {error}")
                    await self.conflict_resolver(error, context)
                except Exception as e:
                    logger.error(f"Conflict resolution failed: {e}")
                    return False

        delay = compute_backoff(attempt, self.policy, self._rng)
        logger.debug(f"Backing off {delay:.2f}s after attempt {attempt}")
        await self._sleep(delay)
        return True


def _describe(context: dict[str, Any]) -> str:
    return ", ".join(f"{k}={v}" for k, v in context.items()) or "no context"
