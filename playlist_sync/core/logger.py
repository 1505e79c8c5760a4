"""
Logging configuration for playlist-sync.

This module sets up the logging system with multiple outputs:
    - Console: Real-time progress with tqdm-compatible formatting
    - log_full_{timestamp}.log: Complete log of all events (DEBUG and above)
    - log_errors_{timestamp}.log: Only ERROR and CRITICAL level messages
    - sync_failures_{timestamp}.log: One entry per failed collection sync

Everything printed to the console is also saved to file, then filtered
into the specialized files.

Usage:
    from playlist_sync.core.logger import setup_logging, get_logger

    setup_logging(log_dir)  # Call once at startup
    logger = get_logger(__name__)  # Get logger for each module

    logger.info("Starting sync")
    log_sync_failure(logger, collection_id=3, title="Mix", error="quota exceeded")
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import TextIO

from tqdm import tqdm


# Log format for file output (detailed with timestamp)
FILE_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Log format for console output (compact, tqdm-friendly)
CONSOLE_LOG_FORMAT = "%(levelname)s: %(message)s"


class Colors:
    """ANSI color codes for terminal output."""
    RESET = "\033[0m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"
    BOLD = "\033[1m"


class ColoredConsoleFormatter(logging.Formatter):
    """
    Formatter that colors the level name for console output.

    Colors:
        - DEBUG: Blue
        - INFO: Green
        - WARNING: Yellow
        - ERROR: Red
        - CRITICAL: Bold Red
    """

    LEVEL_COLORS = {
        logging.DEBUG: Colors.BLUE,
        logging.INFO: Colors.GREEN,
        logging.WARNING: Colors.YELLOW,
        logging.ERROR: Colors.RED,
        logging.CRITICAL: Colors.BOLD + Colors.RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, Colors.WHITE)
        colored_levelname = f"{color}{record.levelname}{Colors.RESET}"
        return f"{colored_levelname}: {record.getMessage()}"


class TqdmLoggingHandler(logging.Handler):
    """
    Logging handler that writes to the console without breaking tqdm bars.

    Batch syncs show a tqdm progress bar; writing log lines straight to
    stderr would corrupt it. tqdm.write() prints above any active bar.
    """

    def __init__(self, stream: TextIO = sys.stderr) -> None:
        super().__init__()
        self.stream = stream

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            tqdm.write(msg, file=self.stream)
        except Exception:
            self.handleError(record)


class SyncFailureHandler(logging.Handler):
    """
    Handler that captures failed collection syncs into a report file.

    It listens for log records carrying sync failure extra fields and
    writes them in a simple, human-readable format:

        [3] Morning Mix (PLabc123)
        quota_exhausted: Daily quota exceeded: 10000/10000 used, 1 requested

    The handler looks for these extra fields in log records:
        - 'sync_failed_collection_id': Local collection id
        - 'sync_failed_title': Collection title (optional)
        - 'sync_failed_remote_id': Remote playlist id (optional)
        - 'sync_failed_kind': ErrorKind value (optional)
        - 'sync_failed_error': Error message

    Only records containing these fields are written to the report.
    """

    def __init__(self, report_path: Path) -> None:
        super().__init__()
        self.report_path = report_path
        self.report_file: TextIO | None = None

    def open(self) -> None:
        """Open the report file for writing (overwrites existing content)."""
        self.report_file = open(self.report_path, "w", encoding="utf-8")

    def emit(self, record: logging.LogRecord) -> None:
        if not hasattr(record, "sync_failed_collection_id"):
            return

        if self.report_file is None:
            return

        try:
            collection_id = getattr(record, "sync_failed_collection_id")
            title = getattr(record, "sync_failed_title", None) or "Unknown"
            remote_id = getattr(record, "sync_failed_remote_id", None) or "?"
            kind = getattr(record, "sync_failed_kind", None) or "unclassified"
            error = getattr(record, "sync_failed_error", "")

            self.report_file.write(f"[{collection_id}] {title} ({remote_id})\n")
            self.report_file.write(f"{kind}: {error}\n\n")
            self.report_file.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        """Close the report file handle. Safe to call multiple times."""
        if self.report_file is not None:
            try:
                self.report_file.close()
            except OSError:
                pass
            self.report_file = None
        super().close()


class ErrorOnlyFilter(logging.Filter):
    """Filter that only allows ERROR and CRITICAL level records."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


def setup_logging(log_dir: Path | None = None, level: str = "INFO") -> None:
    """
    Configure the logging system for the application.

    This function should be called ONCE at application startup, after
    the configuration is loaded but before any other operations.

    Args:
        log_dir: Directory where log files will be created. When None only
                 the console handler is installed.
        level: Console log level name. Files always receive DEBUG.

    Behavior:
        1. Create log_dir if it doesn't exist
        2. Configure root logger level to DEBUG
        3. Console handler (TqdmLoggingHandler), level from argument
        4. Full log file handler (DEBUG)
        5. Error log file handler (filtered to ERROR+)
        6. Sync failure report handler

    Thread Safety:
        Not thread-safe. Call once before starting the event loop.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    console_handler = TqdmLoggingHandler()
    console_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    console_handler.setFormatter(ColoredConsoleFormatter())
    root_logger.addHandler(console_handler)

    if log_dir is None:
        return

    log_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")

    full_handler = logging.FileHandler(
        log_dir / f"log_full_{timestamp}.log", mode="w", encoding="utf-8"
    )
    full_handler.setLevel(logging.DEBUG)
    full_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
    root_logger.addHandler(full_handler)

    error_handler = logging.FileHandler(
        log_dir / f"log_errors_{timestamp}.log", mode="w", encoding="utf-8"
    )
    error_handler.setLevel(logging.DEBUG)  # Filter handles the level restriction
    error_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
    error_handler.addFilter(ErrorOnlyFilter())
    root_logger.addHandler(error_handler)

    failure_handler = SyncFailureHandler(log_dir / f"sync_failures_{timestamp}.log")
    failure_handler.open()
    root_logger.addHandler(failure_handler)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: The logger name, typically __name__ of the calling module.

    Note:
        Loggers obtained before setup_logging() is called have no handlers
        of their own; records propagate to whatever the root logger has.
    """
    return logging.getLogger(name)


def format_sync_summary(added: int, removed: int, reordered: int) -> str:
    """Format a colored one-line summary of applied changes."""
    return (
        f"{Colors.GREEN}+{added}{Colors.RESET} "
        f"{Colors.RED}-{removed}{Colors.RESET} "
        f"{Colors.CYAN}~{reordered}{Colors.RESET}"
    )


def log_sync_failure(
    logger: logging.Logger,
    collection_id: int | str,
    error: str,
    title: str | None = None,
    remote_id: str | None = None,
    kind: str | None = None
) -> None:
    """
    Log a failed collection sync.

    Logs an ERROR level message and attaches the extra fields that
    SyncFailureHandler uses to write to sync_failures.log.

    Example:
        log_sync_failure(
            logger,
            collection_id=3,
            error="Circuit 'youtube' is open; retry in 42.0s",
            title="Morning Mix",
            remote_id="PLabc123",
            kind="circuit_open"
        )
    """
    logger.error(
        f"Sync failed for collection {collection_id}: {error}",
        extra={
            "sync_failed_collection_id": collection_id,
            "sync_failed_title": title,
            "sync_failed_remote_id": remote_id,
            "sync_failed_kind": kind,
            "sync_failed_error": error,
        }
    )


def shutdown_logging() -> None:
    """
    Flush and close all handlers, then detach them from the root logger.

    Typically called in a finally block at application exit.
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        try:
            handler.flush()
            handler.close()
        except OSError:
            pass
        root_logger.removeHandler(handler)
