"""
Configuration management for playlist-sync.

This module handles loading, validating, and providing access to the
application configuration stored in config.yaml.

The configuration file contains:
    - YouTube API credentials (API key and/or OAuth tokens)
    - Database file location
    - Daily quota limit, warning threshold and per-operation cost table
    - Retry and circuit breaker tuning
    - Sync concurrency and batch sizes
    - Periodic sync polling (scheduler)
    - Log directory and level

Credentials may also be supplied through environment variables (or a .env
file): YOUTUBE_API_KEY, YOUTUBE_ACCESS_TOKEN, YOUTUBE_REFRESH_TOKEN,
YOUTUBE_CLIENT_ID, YOUTUBE_CLIENT_SECRET. Values in config.yaml win.

Example config.yaml:
    youtube:
      api_key: "AIza..."

    database:
      path: "~/.playlist-sync/playlist-sync.db"

    quota:
      daily_limit: 10000
      warn_threshold: 1000
      page_size: 50
      costs:
        playlist.details: 1
        playlist.items: 1
        video.details: 1
        search: 100
        channel.details: 1

    retry:
      max_attempts: 5
      initial_delay: 1.0
      max_delay: 30.0
      multiplier: 2.0

    circuit_breaker:
      failure_threshold: 5
      success_threshold: 2
      open_timeout: 60.0

    sync:
      max_concurrent: 5
      batch_size: 50
      refresh_items: false

    scheduler:
      poll_interval: 60.0
      min_quota_remaining: 100
      max_retries: 3

    logging:
      directory: "~/.playlist-sync/logs"
      level: "INFO"
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml
from dotenv import load_dotenv

from playlist_sync.core.exceptions import ConfigError


# Default configuration file name (always in current working directory)
CONFIG_FILENAME = "config.yaml"

DEFAULT_OPERATION_COSTS: Mapping[str, int] = MappingProxyType({
    "playlist.details": 1,
    "playlist.items": 1,   # per page of up to page_size items
    "video.details": 1,    # per batch of up to page_size ids
    "search": 100,
    "channel.details": 1,
})

_ENV_CREDENTIALS = {
    "api_key": "YOUTUBE_API_KEY",
    "access_token": "YOUTUBE_ACCESS_TOKEN",
    "refresh_token": "YOUTUBE_REFRESH_TOKEN",
    "client_id": "YOUTUBE_CLIENT_ID",
    "client_secret": "YOUTUBE_CLIENT_SECRET",
}

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class YouTubeConfig:
    """
    YouTube Data API credentials.

    Either api_key (read-only public playlists) or an OAuth access_token is
    needed. With refresh_token, client_id and client_secret present the
    client can refresh an expired access token on its own.
    """
    api_key: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    client_id: str | None = None
    client_secret: str | None = None

    @property
    def can_refresh(self) -> bool:
        return bool(self.refresh_token and self.client_id and self.client_secret)


@dataclass(frozen=True)
class DatabaseConfig:
    """
    Attributes:
        path: Absolute path of the SQLite database file.
              The parent directory is created on startup by the CLI.
    """
    path: Path


@dataclass(frozen=True)
class QuotaConfig:
    """
    Daily call budget.

    Attributes:
        daily_limit: Units available per UTC day.
        warn_threshold: Warn once when remaining units drop below this.
        page_size: Items per paginated request (YouTube caps this at 50).
        costs: Unit cost per operation type. Paginated types are charged
               per page.
    """
    daily_limit: int = 10000
    warn_threshold: int = 1000
    page_size: int = 50
    costs: Mapping[str, int] = field(default_factory=lambda: DEFAULT_OPERATION_COSTS)


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy; delays are in seconds."""
    max_attempts: int = 5
    initial_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """
    Attributes:
        failure_threshold: Consecutive failures that open the circuit.
        success_threshold: Consecutive half-open successes that close it.
        open_timeout: Seconds the circuit stays open before a trial call.
    """
    failure_threshold: int = 5
    success_threshold: int = 2
    open_timeout: float = 60.0


@dataclass(frozen=True)
class SyncConfig:
    """
    Attributes:
        max_concurrent: Collections synchronized in parallel by batch syncs.
        batch_size: Item ids per details request (at most 50).
        refresh_items: Re-fetch details for every item on each sync instead
                       of only newly seen ones. Costs more quota.
    """
    max_concurrent: int = 5
    batch_size: int = 50
    refresh_items: bool = False


@dataclass(frozen=True)
class SchedulerConfig:
    """
    Attributes:
        poll_interval: Seconds between checks for due schedules in `watch`.
        min_quota_remaining: Due syncs are postponed while fewer units remain today.
        max_retries: Default consecutive failures before a schedule disables itself.
    """
    poll_interval: float = 60.0
    min_quota_remaining: int = 100
    max_retries: int = 3


@dataclass(frozen=True)
class LoggingConfig:
    directory: Path | None = None
    level: str = "INFO"


@dataclass(frozen=True)
class Config:
    """
    Complete application configuration.

    Created by load_config() and treated as immutable (frozen dataclass).

    Example:
        config = load_config()
        print(f"Database: {config.database.path}")
        print(f"Daily quota: {config.quota.daily_limit}")
    """
    youtube: YouTubeConfig
    database: DatabaseConfig
    quota: QuotaConfig = field(default_factory=QuotaConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(config_path: Path | None = None) -> Config:
    """
    Load and validate configuration from config.yaml.

    Args:
        config_path: Optional explicit path to config file.
                     If None, looks for config.yaml in current working directory.

    Returns:
        Config: A frozen dataclass containing all configuration values.

    Raises:
        ConfigError: If the config file is not found, has invalid YAML syntax,
                     is missing required fields, or contains invalid values.

    Behavior:
        1. Locate config file (explicit path or CWD/config.yaml)
        2. Read and parse YAML content
        3. Validate structure (required sections exist)
        4. Merge credentials from the environment (.env supported)
        5. Parse optional sections, applying defaults
        6. Create and return frozen Config object
    """
    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILENAME

    if not config_path.exists():
        raise ConfigError(
            f"Configuration file not found: {config_path}",
            details={"file_path": str(config_path)}
        )

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            content = f.read()
    except IOError as e:
        raise ConfigError(
            f"Failed to read configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    try:
        raw_config = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Invalid YAML syntax in configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    if not isinstance(raw_config, dict):
        raise ConfigError(
            "Configuration file must contain a YAML dictionary",
            details={"file_path": str(config_path)}
        )

    _validate_config(raw_config)

    load_dotenv()

    return Config(
        youtube=_parse_youtube_config(raw_config.get("youtube")),
        database=_parse_database_config(raw_config["database"]),
        quota=_parse_quota_config(raw_config.get("quota")),
        retry=_parse_retry_config(raw_config.get("retry")),
        circuit_breaker=_parse_circuit_breaker_config(raw_config.get("circuit_breaker")),
        sync=_parse_sync_config(raw_config.get("sync")),
        scheduler=_parse_scheduler_config(raw_config.get("scheduler")),
        logging=_parse_logging_config(raw_config.get("logging")),
    )


def _validate_config(raw_config: dict[str, Any]) -> None:
    """Check required sections exist and every present section is a mapping."""
    if "database" not in raw_config:
        raise ConfigError(
            "Missing required section: 'database'",
            details={"missing_section": "database"}
        )

    for section, value in raw_config.items():
        if value is not None and not isinstance(value, dict):
            raise ConfigError(
                f"Section '{section}' must be a dictionary",
                details={"section": section}
            )


def _positive_int(section: dict[str, Any], key: str, default: int, prefix: str) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError(
            f"'{prefix}.{key}' must be a positive integer",
            details={"field": f"{prefix}.{key}", "value": value}
        )
    return value


def _non_negative_int(section: dict[str, Any], key: str, default: int, prefix: str) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigError(
            f"'{prefix}.{key}' must be a non-negative integer",
            details={"field": f"{prefix}.{key}", "value": value}
        )
    return value


def _positive_float(section: dict[str, Any], key: str, default: float, prefix: str) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(
            f"'{prefix}.{key}' must be a positive number",
            details={"field": f"{prefix}.{key}", "value": value}
        )
    return float(value)


def _parse_youtube_config(section: dict[str, Any] | None) -> YouTubeConfig:
    section = section or {}
    values: dict[str, str | None] = {}

    for key, env_name in _ENV_CREDENTIALS.items():
        raw = section.get(key)
        if raw is not None and not isinstance(raw, str):
            raise ConfigError(
                f"'youtube.{key}' must be a string",
                details={"field": f"youtube.{key}"}
            )
        raw = (raw or "").strip() or os.environ.get(env_name, "").strip()
        values[key] = raw or None

    youtube = YouTubeConfig(**values)

    if not youtube.api_key and not youtube.access_token and not youtube.can_refresh:
        raise ConfigError(
            "Either 'youtube.api_key' or OAuth credentials must be set",
            details={"field": "youtube"}
        )

    return youtube


def _parse_database_config(section: dict[str, Any] | None) -> DatabaseConfig:
    section = section or {}
    raw_path = section.get("path", "")

    if not isinstance(raw_path, str) or not raw_path.strip():
        raise ConfigError(
            "'database.path' must be a non-empty string",
            details={"field": "database.path"}
        )

    return DatabaseConfig(path=Path(raw_path.strip()).expanduser().resolve())


def _parse_quota_config(section: dict[str, Any] | None) -> QuotaConfig:
    section = section or {}

    daily_limit = _positive_int(section, "daily_limit", 10000, "quota")
    warn_threshold = _non_negative_int(section, "warn_threshold", 1000, "quota")
    page_size = _positive_int(section, "page_size", 50, "quota")

    if page_size > 50:
        raise ConfigError(
            "'quota.page_size' cannot exceed 50",
            details={"field": "quota.page_size", "value": page_size}
        )

    raw_costs = section.get("costs") or {}
    if not isinstance(raw_costs, dict):
        raise ConfigError(
            "'quota.costs' must be a dictionary",
            details={"field": "quota.costs"}
        )

    costs = dict(DEFAULT_OPERATION_COSTS)
    for operation_type in raw_costs:
        costs[str(operation_type)] = _positive_int(
            raw_costs, operation_type, 1, "quota.costs"
        )

    return QuotaConfig(
        daily_limit=daily_limit,
        warn_threshold=warn_threshold,
        page_size=page_size,
        costs=MappingProxyType(costs),
    )


def _parse_retry_config(section: dict[str, Any] | None) -> RetryConfig:
    section = section or {}

    config = RetryConfig(
        max_attempts=_positive_int(section, "max_attempts", 5, "retry"),
        initial_delay=_positive_float(section, "initial_delay", 1.0, "retry"),
        max_delay=_positive_float(section, "max_delay", 30.0, "retry"),
        multiplier=_positive_float(section, "multiplier", 2.0, "retry"),
    )

    if config.max_delay < config.initial_delay:
        raise ConfigError(
            "'retry.max_delay' must be >= 'retry.initial_delay'",
            details={"initial_delay": config.initial_delay, "max_delay": config.max_delay}
        )

    return config


def _parse_circuit_breaker_config(section: dict[str, Any] | None) -> CircuitBreakerConfig:
    section = section or {}

    return CircuitBreakerConfig(
        failure_threshold=_positive_int(section, "failure_threshold", 5, "circuit_breaker"),
        success_threshold=_positive_int(section, "success_threshold", 2, "circuit_breaker"),
        open_timeout=_positive_float(section, "open_timeout", 60.0, "circuit_breaker"),
    )


def _parse_sync_config(section: dict[str, Any] | None) -> SyncConfig:
    section = section or {}

    batch_size = _positive_int(section, "batch_size", 50, "sync")
    if batch_size > 50:
        raise ConfigError(
            "'sync.batch_size' cannot exceed 50",
            details={"field": "sync.batch_size", "value": batch_size}
        )

    refresh_items = section.get("refresh_items", False)
    if not isinstance(refresh_items, bool):
        raise ConfigError(
            "'sync.refresh_items' must be true or false",
            details={"field": "sync.refresh_items", "value": refresh_items}
        )

    return SyncConfig(
        max_concurrent=_positive_int(section, "max_concurrent", 5, "sync"),
        batch_size=batch_size,
        refresh_items=refresh_items,
    )


def _parse_scheduler_config(section: dict[str, Any] | None) -> SchedulerConfig:
    section = section or {}

    return SchedulerConfig(
        poll_interval=_positive_float(section, "poll_interval", 60.0, "scheduler"),
        min_quota_remaining=_non_negative_int(section, "min_quota_remaining", 100, "scheduler"),
        max_retries=_positive_int(section, "max_retries", 3, "scheduler"),
    )


def _parse_logging_config(section: dict[str, Any] | None) -> LoggingConfig:
    section = section or {}

    directory = section.get("directory")
    if directory is not None:
        if not isinstance(directory, str) or not directory.strip():
            raise ConfigError(
                "'logging.directory' must be a non-empty string",
                details={"field": "logging.directory"}
            )
        directory = Path(directory.strip()).expanduser().resolve()

    level = str(section.get("level", "INFO")).upper()
    if level not in _LOG_LEVELS:
        raise ConfigError(
            f"'logging.level' must be one of {', '.join(_LOG_LEVELS)}",
            details={"field": "logging.level", "value": level}
        )

    return LoggingConfig(directory=directory, level=level)
