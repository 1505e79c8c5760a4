"""Test configuration loading"""

import pytest

from playlist_sync.core.config import load_config
from playlist_sync.core.exceptions import ConfigError


ENV_VARS = (
    "YOUTUBE_API_KEY",
    "YOUTUBE_ACCESS_TOKEN",
    "YOUTUBE_REFRESH_TOKEN",
    "YOUTUBE_CLIENT_ID",
    "YOUTUBE_CLIENT_SECRET",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def write_config(temp_dir, text):
    path = temp_dir / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    """Test load_config()"""

    def test_minimal_config_uses_defaults(self, temp_dir):
        """Only youtube and database are needed; everything else defaults"""
        path = write_config(temp_dir, (
            "youtube:\n"
            "  api_key: abc\n"
            "database:\n"
            f"  path: {temp_dir / 'sync.db'}\n"
        ))
        config = load_config(path)

        assert config.youtube.api_key == "abc"
        assert config.database.path == (temp_dir / "sync.db").resolve()
        assert config.quota.daily_limit == 10000
        assert config.quota.warn_threshold == 1000
        assert config.quota.costs["playlist.items"] == 1
        assert config.quota.costs["search"] == 100
        assert config.retry.max_attempts == 5
        assert config.retry.max_delay == 30.0
        assert config.circuit_breaker.failure_threshold == 5
        assert config.circuit_breaker.open_timeout == 60.0
        assert config.sync.max_concurrent == 5
        assert config.sync.refresh_items is False
        assert config.scheduler.poll_interval == 60.0
        assert config.scheduler.min_quota_remaining == 100
        assert config.scheduler.max_retries == 3
        assert config.logging.directory is None
        assert config.logging.level == "INFO"

    def test_overrides(self, temp_dir):
        """Optional sections override defaults"""
        path = write_config(temp_dir, (
            "youtube:\n"
            "  api_key: abc\n"
            "database:\n"
            "  path: sync.db\n"
            "quota:\n"
            "  daily_limit: 500\n"
            "  costs:\n"
            "    playlist.items: 3\n"
            "retry:\n"
            "  max_attempts: 2\n"
            "  initial_delay: 0.5\n"
            "sync:\n"
            "  max_concurrent: 8\n"
            "  refresh_items: true\n"
            "scheduler:\n"
            "  poll_interval: 15\n"
            "  min_quota_remaining: 0\n"
            "logging:\n"
            "  level: debug\n"
        ))
        config = load_config(path)

        assert config.quota.daily_limit == 500
        assert config.quota.costs["playlist.items"] == 3
        assert config.quota.costs["video.details"] == 1
        assert config.retry.max_attempts == 2
        assert config.retry.initial_delay == 0.5
        assert config.sync.max_concurrent == 8
        assert config.sync.refresh_items is True
        assert config.scheduler.poll_interval == 15.0
        assert config.scheduler.min_quota_remaining == 0
        assert config.scheduler.max_retries == 3
        assert config.logging.level == "DEBUG"

    def test_credentials_from_environment(self, temp_dir, monkeypatch):
        """Empty credentials fall back to environment variables"""
        monkeypatch.setenv("YOUTUBE_API_KEY", "from-env")
        path = write_config(temp_dir, "database:\n  path: sync.db\n")

        config = load_config(path)

        assert config.youtube.api_key == "from-env"

    def test_refresh_credentials_detected(self, temp_dir):
        """Refresh token plus client credentials enable refreshing"""
        path = write_config(temp_dir, (
            "youtube:\n"
            "  refresh_token: r\n"
            "  client_id: id\n"
            "  client_secret: secret\n"
            "database:\n"
            "  path: sync.db\n"
        ))
        config = load_config(path)

        assert config.youtube.can_refresh
        assert config.youtube.api_key is None

    def test_missing_file(self, temp_dir):
        """A missing file raises ConfigError"""
        with pytest.raises(ConfigError) as exc_info:
            load_config(temp_dir / "nope.yaml")
        assert "not found" in exc_info.value.message

    def test_missing_credentials(self, temp_dir):
        """No api key and no OAuth credentials is an error"""
        path = write_config(temp_dir, "database:\n  path: sync.db\n")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_missing_database_section(self, temp_dir):
        path = write_config(temp_dir, "youtube:\n  api_key: abc\n")
        with pytest.raises(ConfigError) as exc_info:
            load_config(path)
        assert exc_info.value.details["missing_section"] == "database"

    @pytest.mark.parametrize("section", [
        "quota:\n  page_size: 100\n",
        "quota:\n  daily_limit: 0\n",
        "retry:\n  initial_delay: 10\n  max_delay: 5\n",
        "sync:\n  batch_size: 51\n",
        "sync:\n  refresh_items: maybe\n",
        "circuit_breaker:\n  failure_threshold: -1\n",
        "logging:\n  level: LOUD\n",
        "scheduler:\n  poll_interval: 0\n",
        "scheduler:\n  max_retries: 0\n",
        "retry: 3\n",
    ])
    def test_invalid_values(self, temp_dir, section):
        """Invalid values raise ConfigError"""
        path = write_config(temp_dir, (
            "youtube:\n  api_key: abc\n"
            "database:\n  path: sync.db\n"
            + section
        ))
        with pytest.raises(ConfigError):
            load_config(path)

    def test_invalid_yaml(self, temp_dir):
        path = write_config(temp_dir, "youtube: [unclosed\n")
        with pytest.raises(ConfigError):
            load_config(path)
