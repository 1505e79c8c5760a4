"""Test the command-line interface"""

from datetime import datetime, timezone

import pytest
from click.testing import CliRunner

from playlist_sync import cli as cli_module
from playlist_sync.cli import cli
from playlist_sync.core.database import Database
from playlist_sync.core.exceptions import ValidationError


@pytest.fixture
def config_path(temp_dir, monkeypatch):
    monkeypatch.delenv("YOUTUBE_API_KEY", raising=False)
    path = temp_dir / "config.yaml"
    path.write_text(
        "youtube:\n"
        "  api_key: test-key\n"
        "database:\n"
        f"  path: {temp_dir / 'data' / 'sync.db'}\n"
        "quota:\n"
        "  daily_limit: 50\n"
        "scheduler:\n"
        "  min_quota_remaining: 5\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def db_path(temp_dir):
    return temp_dir / "data" / "sync.db"


@pytest.fixture
def patched_client(remote, monkeypatch):
    monkeypatch.setattr(cli_module, "_create_client", lambda config: remote)
    return remote


def run(config_path, *args):
    return CliRunner().invoke(cli, ["--config", str(config_path), *args])


class TestCli:
    """Test CLI commands end to end with a fake remote"""

    def test_missing_config(self, temp_dir):
        result = CliRunner().invoke(cli, ["--config", str(temp_dir / "missing.yaml"), "list"])
        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_list_empty(self, config_path, patched_client):
        result = run(config_path, "list")
        assert result.exit_code == 0
        assert "No collections imported yet." in result.output

    def test_import_and_list(self, config_path, patched_client):
        patched_client.set_playlist("PLabc", ["A", "B"], title="Road Trip")

        result = run(config_path, "import", "https://www.youtube.com/playlist?list=PLabc")
        assert result.exit_code == 0
        assert "Imported: [1] Road Trip (PLabc, 2 items)" in result.output

        result = run(config_path, "import", "PLabc")
        assert "Already imported" in result.output

        result = run(config_path, "list")
        assert "Road Trip (PLabc)" in result.output
        assert "status=PENDING" in result.output
        assert patched_client.closed

    def test_import_invalid(self, config_path, patched_client):
        result = run(config_path, "import", "not a playlist!")
        assert result.exit_code == 1
        assert "Invalid playlist URL or ID" in result.output

    def test_sync_all(self, config_path, db_path, patched_client):
        patched_client.set_playlist("PL1", ["A", "B"])
        patched_client.set_playlist("PL2", ["C"])
        run(config_path, "import", "PL1")
        run(config_path, "import", "PL2")

        result = run(config_path, "sync", "--all")

        assert result.exit_code == 0
        assert "2 completed, 0 failed" in result.output

        db = Database(db_path)
        try:
            assert len(db.get_active_members(1)) == 2
            assert len(db.get_active_members(2)) == 1
        finally:
            db.close()

    def test_sync_failure_exit_code(self, config_path, patched_client):
        patched_client.set_playlist("PL1", ["A"])
        run(config_path, "import", "PL1")
        patched_client.fail("get_membership_page", ValidationError("playlist is private"))

        result = run(config_path, "sync", "PL1", "PL-missing")

        assert result.exit_code == 1
        assert "[validation] playlist is private" in result.output
        assert "[not_found]" in result.output
        assert "0 completed, 2 failed" in result.output

    def test_sync_requires_targets(self, config_path, patched_client):
        result = run(config_path, "sync")
        assert result.exit_code == 2

    def test_quota(self, config_path, patched_client):
        patched_client.set_playlist("PL1", ["A"])
        run(config_path, "import", "PL1")

        result = run(config_path, "quota", "--days", "3")

        assert result.exit_code == 0
        assert "1/50 used" in result.output
        assert "playlist.details: 1 calls, 1 units" in result.output

    def test_stats_and_unlock(self, config_path, db_path, patched_client):
        patched_client.set_playlist("PL1", ["A"])
        run(config_path, "import", "PL1")
        run(config_path, "sync", "PL1")

        result = run(config_path, "stats", "PL1")
        assert result.exit_code == 0
        assert "Total syncs:      1" in result.output
        assert "Successful:       1" in result.output

        result = run(config_path, "unlock", "PL1")
        assert result.exit_code == 0
        assert "PL1 is not locked" in result.output

        db = Database(db_path)
        try:
            db.try_acquire_sync_lock(1)
        finally:
            db.close()

        result = run(config_path, "unlock", "1")
        assert "Released sync lock on 1" in result.output

    def test_stats_unknown_collection(self, config_path, patched_client):
        result = run(config_path, "stats", "PL-missing")
        assert result.exit_code == 1
        assert "Collection not found: PL-missing" in result.output

    def test_show_members(self, config_path, patched_client):
        patched_client.set_playlist("PL1", ["A", "B"], title="Road Trip")
        run(config_path, "import", "PL1")
        run(config_path, "sync", "PL1")

        result = run(config_path, "show", "PL1")

        assert result.exit_code == 0
        assert "Road Trip (PL1): 2 items" in result.output
        assert "1. Video A (A) 3:00" in result.output
        assert "2. Video B (B) 3:00" in result.output

    def test_show_unknown_collection(self, config_path, patched_client):
        result = run(config_path, "show", "PL-missing")
        assert result.exit_code == 1
        assert "Collection not found: PL-missing" in result.output


class TestScheduleCommands:
    """Test schedule management and the watch loop"""

    def test_add_list_update_remove(self, config_path, patched_client):
        patched_client.set_playlist("PL1", ["A"], title="Road Trip")
        run(config_path, "import", "PL1")

        result = run(config_path, "schedule", "list")
        assert "No schedules found." in result.output

        result = run(config_path, "schedule", "add", "PL1", "6h")
        assert result.exit_code == 0
        assert "every 6h, enabled" in result.output

        result = run(config_path, "schedule", "add", "PL1", "1h")
        assert result.exit_code == 1
        assert "Schedule already exists" in result.output

        result = run(config_path, "schedule", "update", "PL1", "--disable", "--interval", "1d")
        assert result.exit_code == 0
        assert "every 1d, disabled" in result.output

        result = run(config_path, "schedule", "list")
        assert "Road Trip (PL1): every 1d, disabled" in result.output
        assert "No schedules found." in run(config_path, "schedule", "list", "--enabled-only").output

        result = run(config_path, "schedule", "remove", "PL1")
        assert "Removed schedule for PL1" in result.output
        assert "PL1 has no schedule" in run(config_path, "schedule", "remove", "PL1").output

    def test_add_invalid_interval(self, config_path, patched_client):
        patched_client.set_playlist("PL1", ["A"])
        run(config_path, "import", "PL1")

        result = run(config_path, "schedule", "add", "PL1", "5s")

        assert result.exit_code == 1
        assert "Invalid interval" in result.output

    def test_update_requires_a_change(self, config_path, patched_client):
        result = run(config_path, "schedule", "update", "PL1")
        assert result.exit_code == 2

    def test_watch_once(self, config_path, db_path, patched_client):
        patched_client.set_playlist("PL1", ["A", "B"])
        run(config_path, "import", "PL1")
        run(config_path, "schedule", "add", "PL1", "1h")

        result = run(config_path, "watch", "--once")
        assert result.exit_code == 0
        assert "No scheduled syncs due" in result.output

        db = Database(db_path)
        try:
            db.update_schedule(1, next_run_at=datetime(2020, 1, 1, tzinfo=timezone.utc))
        finally:
            db.close()

        result = run(config_path, "watch", "--once")

        assert result.exit_code == 0
        assert "OK     Playlist PL1: +2 -0 ~0" in result.output

        db = Database(db_path)
        try:
            assert len(db.get_active_members(1)) == 2
            assert db.get_schedule(1).last_run_at is not None
        finally:
            db.close()
