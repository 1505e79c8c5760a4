"""
Core module for playlist-sync.

This module provides the foundational components used throughout the application:
    - exceptions: Tagged exception classes for error handling
    - models: Dataclasses mirroring database rows
    - config: Configuration loading and validation
    - database: Thread-safe SQLite database for the local mirror
    - logger: Logging system with multiple outputs

Usage:
    from playlist_sync.core import (
        Config, load_config,
        Database,
        setup_logging, get_logger,
        PlaylistSyncError, ConfigError, DatabaseError
    )
"""

from playlist_sync.core.config import (
    CircuitBreakerConfig,
    Config,
    DatabaseConfig,
    LoggingConfig,
    QuotaConfig,
    RetryConfig,
    SchedulerConfig,
    SyncConfig,
    YouTubeConfig,
    load_config,
)
from playlist_sync.core.database import Database, utc_now
from playlist_sync.core.exceptions import (
    AuthenticationError,
    CircuitOpenError,
    ConcurrentSyncError,
    ConfigError,
    DatabaseError,
    ErrorKind,
    NetworkError,
    PlaylistSyncError,
    QuotaExceededError,
    RateLimitError,
    RecordNotFoundError,
    RemoteError,
    SyncConflictError,
    SyncError,
    ValidationError,
)
from playlist_sync.core.logger import (
    get_logger,
    log_sync_failure,
    setup_logging,
    shutdown_logging,
)
from playlist_sync.core.models import (
    Collection,
    Item,
    Member,
    QuotaUsage,
    SyncAudit,
    SyncSchedule,
    SyncStatus,
)

__all__ = [
    # Config
    "Config",
    "YouTubeConfig",
    "DatabaseConfig",
    "QuotaConfig",
    "RetryConfig",
    "CircuitBreakerConfig",
    "SyncConfig",
    "SchedulerConfig",
    "LoggingConfig",
    "load_config",
    # Database
    "Database",
    "utc_now",
    # Models
    "Collection",
    "Item",
    "Member",
    "QuotaUsage",
    "SyncAudit",
    "SyncSchedule",
    "SyncStatus",
    # Exceptions
    "ErrorKind",
    "PlaylistSyncError",
    "ConfigError",
    "DatabaseError",
    "RecordNotFoundError",
    "ValidationError",
    "RemoteError",
    "NetworkError",
    "RateLimitError",
    "AuthenticationError",
    "QuotaExceededError",
    "SyncError",
    "ConcurrentSyncError",
    "SyncConflictError",
    "CircuitOpenError",
    # Logger
    "setup_logging",
    "get_logger",
    "log_sync_failure",
    "shutdown_logging",
]
