"""Test logging setup and the sync failure report"""

import logging

from playlist_sync.core.logger import (
    ErrorOnlyFilter,
    get_logger,
    log_sync_failure,
    setup_logging,
    shutdown_logging,
)


class TestLogging:
    """Test setup_logging() outputs"""

    def test_log_files_created(self, temp_dir):
        log_dir = temp_dir / "logs"
        try:
            setup_logging(log_dir, level="DEBUG")
            logger = get_logger("playlist_sync.test")
            logger.info("hello")
            logger.error("broken")
        finally:
            shutdown_logging()

        full = next(log_dir.glob("log_full_*.log")).read_text(encoding="utf-8")
        errors = next(log_dir.glob("log_errors_*.log")).read_text(encoding="utf-8")
        assert "hello" in full and "broken" in full
        assert "broken" in errors
        assert "hello" not in errors

    def test_sync_failure_report(self, temp_dir):
        try:
            setup_logging(temp_dir)
            log_sync_failure(
                get_logger("playlist_sync.test"),
                collection_id=3,
                error="Daily quota exceeded: 100/100 used, 1 requested",
                title="Morning Mix",
                remote_id="PLabc",
                kind="quota_exhausted",
            )
            get_logger("playlist_sync.test").error("unrelated error")
        finally:
            shutdown_logging()

        report = next(temp_dir.glob("sync_failures_*.log")).read_text(encoding="utf-8")
        assert report == (
            "[3] Morning Mix (PLabc)\n"
            "quota_exhausted: Daily quota exceeded: 100/100 used, 1 requested\n\n"
        )

    def test_console_only(self, temp_dir):
        try:
            setup_logging(None)
            assert len(logging.getLogger().handlers) == 1
        finally:
            shutdown_logging()
        assert list(temp_dir.iterdir()) == []

    def test_error_only_filter(self):
        record = logging.LogRecord("x", logging.WARNING, __file__, 1, "msg", None, None)
        assert not ErrorOnlyFilter().filter(record)
        record.levelno = logging.CRITICAL
        assert ErrorOnlyFilter().filter(record)
