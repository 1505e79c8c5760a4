"""
Exception classes for playlist-sync.

Every exception carries a `kind` tag (an ErrorKind value). The resilience
layer never inspects the exception type directly: it reads the tag through
classify_error() and looks the recovery strategy up in a fixed table, so
the classification can be tested without any I/O.

Exception Hierarchy:
    PlaylistSyncError (base)
        ConfigError - Configuration file issues
        DatabaseError - SQLite issues
            RecordNotFoundError - Missing collection/item
        ValidationError - Malformed input (non-recoverable)
        RemoteError - Remote API issues
            NetworkError - Transport failures, 5xx (retry with backoff)
            RateLimitError - Throttled, carries retry_after (wait then retry)
            AuthenticationError - Expired/invalid credentials (refresh then retry)
            QuotaExceededError - Daily quota exhausted (non-recoverable)
        SyncError - Synchronization issues
            ConcurrentSyncError - Collection already being synced
            SyncConflictError - Concurrent modification (resolve then retry)
        CircuitOpenError - Dependency short-circuited by the breaker
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Tag describing what went wrong, independent of the exception type."""
    NETWORK = "network"
    RATE_LIMITED = "rate_limited"
    AUTHENTICATION = "authentication"
    CONFLICT = "conflict"
    QUOTA_EXHAUSTED = "quota_exhausted"
    VALIDATION = "validation"
    CIRCUIT_OPEN = "circuit_open"
    CONCURRENT_SYNC = "concurrent_sync"
    NOT_FOUND = "not_found"
    DATABASE = "database"
    UNCLASSIFIED = "unclassified"


class PlaylistSyncError(Exception):
    """
    Base exception for all playlist-sync errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context
                 (collection id, HTTP status, original error, ...).
        kind: ErrorKind tag consumed by the resilience layer.

    Example:
        try:
            ledger.require("playlist.items", 1)
        except PlaylistSyncError as e:
            logger.error(f"Operation failed: {e.message}")
            if e.details:
                logger.debug(f"Details: {e.details}")
    """

    kind: ErrorKind = ErrorKind.UNCLASSIFIED

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class ConfigError(PlaylistSyncError):
    """
    Raised when there's an issue with the configuration file.

    This is a CRITICAL error that should stop program execution.

    Example:
        raise ConfigError(
            "'quota.daily_limit' must be a positive integer",
            details={'field': 'quota.daily_limit', 'value': -1}
        )
    """
    kind = ErrorKind.VALIDATION


class DatabaseError(PlaylistSyncError):
    """
    Raised when there's an issue with the SQLite database.

    Common causes:
        - Schema version mismatch
        - Locked or corrupted database file
        - Constraint violation while applying a change set
    """
    kind = ErrorKind.DATABASE


class RecordNotFoundError(DatabaseError):
    """Raised when a collection or item is not stored locally."""
    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity: str, identifier: str | int, details: dict | None = None) -> None:
        super().__init__(
            f"{entity} not found: {identifier}",
            details={"entity": entity, "id": identifier, **(details or {})}
        )


class ValidationError(PlaylistSyncError):
    """
    Raised for malformed input: bad playlist ids, invalid costs, 400/404
    responses. Retrying cannot help.
    """
    kind = ErrorKind.VALIDATION


class RemoteError(PlaylistSyncError):
    """
    Raised when the remote API returns an error that fits no narrower class.

    Attributes:
        status_code: HTTP status, if the error came from a response.
    """

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        status_code: int | None = None
    ) -> None:
        super().__init__(message, details)
        self.status_code = status_code


class NetworkError(RemoteError):
    """Transport failure or 5xx response. Recoverable via backoff."""
    kind = ErrorKind.NETWORK


class RateLimitError(RemoteError):
    """
    Raised when the remote API throttles us.

    Attributes:
        retry_after: Seconds the server asked us to wait, or None if the
                     response carried no hint.
    """
    kind = ErrorKind.RATE_LIMITED

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: float | None = None,
        details: dict | None = None,
        status_code: int | None = 429
    ) -> None:
        super().__init__(message, details, status_code)
        self.retry_after = retry_after


class AuthenticationError(RemoteError):
    """Expired or invalid credentials. Recoverable via credential refresh."""
    kind = ErrorKind.AUTHENTICATION


class QuotaExceededError(RemoteError):
    """
    Raised when a quota reservation is rejected or the remote API reports
    its daily quota as exhausted.

    Non-recoverable until the UTC day rolls over.

    Attributes:
        used: Units already consumed today.
        limit: Daily limit.
        requested: Units the rejected operation asked for.
    """
    kind = ErrorKind.QUOTA_EXHAUSTED

    def __init__(
        self,
        used: int,
        limit: int,
        requested: int,
        details: dict | None = None
    ) -> None:
        super().__init__(
            f"Daily quota exceeded: {used}/{limit} used, {requested} requested",
            details={"used": used, "limit": limit, "requested": requested, **(details or {})},
            status_code=403
        )
        self.used = used
        self.limit = limit
        self.requested = requested


class SyncError(PlaylistSyncError):
    """Base class for synchronization failures."""
    pass


class ConcurrentSyncError(SyncError):
    """Raised when a collection is already InProgress. Never retried."""
    kind = ErrorKind.CONCURRENT_SYNC

    def __init__(self, collection_id: str | int, details: dict | None = None) -> None:
        super().__init__(
            f"Collection already being synced: {collection_id}",
            details={"collection_id": collection_id, **(details or {})}
        )


class SyncConflictError(SyncError):
    """Write conflict or concurrent modification. Recoverable via resolution."""
    kind = ErrorKind.CONFLICT


class CircuitOpenError(PlaylistSyncError):
    """Raised (or returned) when the breaker rejects a call without invoking it."""
    kind = ErrorKind.CIRCUIT_OPEN

    def __init__(self, name: str, retry_in: float) -> None:
        super().__init__(
            f"Circuit '{name}' is open; retry in {retry_in:.1f}s",
            details={"circuit": name, "retry_in": retry_in}
        )
        self.retry_in = retry_in
