"""
Error classification and the recovery strategy table.

Both functions here are pure: classify_error() reads the ErrorKind tag an
exception carries (or recognizes a transport error) and strategy_for()
looks the kind up in STRATEGY_TABLE. The retry loop in layer.py only
consumes their output.
"""

import asyncio
from enum import Enum
from types import MappingProxyType
from typing import Mapping

import aiohttp

from playlist_sync.core.exceptions import ErrorKind


class RecoveryStrategy(str, Enum):
    RETRY = "retry"                          # Retry with exponential backoff
    WAIT_AND_RETRY = "wait_and_retry"        # Wait the server hint, then retry
    REFRESH_AND_RETRY = "refresh_and_retry"  # Refresh credentials, then backoff
    RESOLVE_AND_RETRY = "resolve_and_retry"  # Resolve conflict, then backoff
    FAIL = "fail"                            # Stop immediately


STRATEGY_TABLE: Mapping[ErrorKind, RecoveryStrategy] = MappingProxyType({
    ErrorKind.NETWORK: RecoveryStrategy.RETRY,
    ErrorKind.RATE_LIMITED: RecoveryStrategy.WAIT_AND_RETRY,
    ErrorKind.AUTHENTICATION: RecoveryStrategy.REFRESH_AND_RETRY,
    ErrorKind.CONFLICT: RecoveryStrategy.RESOLVE_AND_RETRY,
    ErrorKind.QUOTA_EXHAUSTED: RecoveryStrategy.FAIL,
    ErrorKind.VALIDATION: RecoveryStrategy.FAIL,
    ErrorKind.CIRCUIT_OPEN: RecoveryStrategy.FAIL,
    ErrorKind.CONCURRENT_SYNC: RecoveryStrategy.FAIL,
    ErrorKind.NOT_FOUND: RecoveryStrategy.FAIL,
    ErrorKind.DATABASE: RecoveryStrategy.FAIL,
    ErrorKind.UNCLASSIFIED: RecoveryStrategy.RETRY,
})

# Kinds that say nothing about the health of the remote dependency
BREAKER_NEUTRAL_KINDS = frozenset({
    ErrorKind.QUOTA_EXHAUSTED,
    ErrorKind.VALIDATION,
    ErrorKind.CONCURRENT_SYNC,
    ErrorKind.NOT_FOUND,
    ErrorKind.DATABASE,
})

_TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError)


def classify_error(error: BaseException) -> ErrorKind:
    """
    Map an exception to an ErrorKind.

    Project exceptions carry their own tag; raw transport errors count as
    NETWORK; everything else is UNCLASSIFIED.
    """
    kind = getattr(error, "kind", None)
    if isinstance(kind, ErrorKind):
        return kind
    if isinstance(error, _TRANSPORT_ERRORS):
        return ErrorKind.NETWORK
    return ErrorKind.UNCLASSIFIED


def strategy_for(kind: ErrorKind) -> RecoveryStrategy:
    return STRATEGY_TABLE.get(kind, RecoveryStrategy.RETRY)


def is_recoverable(error: BaseException) -> bool:
    return strategy_for(classify_error(error)) is not RecoveryStrategy.FAIL
