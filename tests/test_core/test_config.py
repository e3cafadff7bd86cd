"""Tests for configuration management."""

from pathlib import Path

import pytest

from circlekeeper.core.config import (
    Config,
    get_config,
    load_config,
    load_env_file,
    reset_config,
    validate_config,
)
from circlekeeper.core.exceptions import ConfigurationError

ENV_KEYS = [
    "CIRCLEKEEPER_DB_PATH",
    "CIRCLEKEEPER_LOG_PATH",
    "CIRCLEKEEPER_CACHE_TTL_SECONDS",
    "CIRCLEKEEPER_MAINTAIN_AFTER_DAYS",
    "CIRCLEKEEPER_PRUNE_AFTER_DAYS",
    "CIRCLEKEEPER_DEBUG",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the host environment out of config tests."""
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    reset_config()
    yield
    reset_config()


class TestConfig:
    """Test Config dataclass."""

    def test_config_default_values(self):
        """Config has sensible defaults."""
        config = Config()
        assert config.debug is False
        assert config.cache_ttl_seconds == 300
        assert config.maintain_after_days == 30
        assert config.prune_after_days == 180

    def test_config_with_custom_paths(self, tmp_path: Path):
        """Config accepts custom paths."""
        config = Config(db_path=tmp_path / "data.db")
        assert "data.db" in str(config.db_path)


class TestLoadEnvFile:
    """Test .env parsing."""

    def test_parses_comments_blanks_and_quotes(self, tmp_path: Path):
        """Comments and blank lines are skipped, quotes stripped."""
        env_file = tmp_path / ".env"
        env_file.write_text('# comment\n\nA=1\nB="two"\nC = \'three\'\nnot a pair\n')
        assert load_env_file(env_file) == {"A": "1", "B": "two", "C": "three"}

    def test_missing_file_is_empty(self, tmp_path: Path):
        """A missing .env yields no variables."""
        assert load_env_file(tmp_path / "nope.env") == {}


class TestLoadConfig:
    """Test config loading."""

    def test_load_from_env_file(self, tmp_path: Path):
        """Values come from the .env file."""
        env_file = tmp_path / ".env"
        env_file.write_text(
            "CIRCLEKEEPER_DEBUG=true\n"
            "CIRCLEKEEPER_CACHE_TTL_SECONDS=60\n"
            f"CIRCLEKEEPER_DB_PATH={tmp_path / 'k.db'}\n"
        )
        config = load_config(env_file)
        assert config.debug is True
        assert config.cache_ttl_seconds == 60
        assert config.db_path == (tmp_path / "k.db").resolve()

    def test_environment_overrides_env_file(self, tmp_path: Path, monkeypatch):
        """Process environment wins over .env."""
        env_file = tmp_path / ".env"
        env_file.write_text("CIRCLEKEEPER_PRUNE_AFTER_DAYS=200\n")
        monkeypatch.setenv("CIRCLEKEEPER_PRUNE_AFTER_DAYS", "365")
        assert load_config(env_file).prune_after_days == 365

    def test_non_integer_raises(self, tmp_path: Path, monkeypatch):
        """Unparseable numbers are a ConfigurationError."""
        monkeypatch.setenv("CIRCLEKEEPER_CACHE_TTL_SECONDS", "soon")
        with pytest.raises(ConfigurationError, match="CIRCLEKEEPER_CACHE_TTL_SECONDS"):
            load_config(tmp_path / ".env")

    def test_negative_integer_raises(self, tmp_path: Path, monkeypatch):
        """Negative numbers are a ConfigurationError."""
        monkeypatch.setenv("CIRCLEKEEPER_MAINTAIN_AFTER_DAYS", "-1")
        with pytest.raises(ConfigurationError):
            load_config(tmp_path / ".env")

    def test_get_config_is_cached(self, tmp_path: Path, monkeypatch):
        """get_config returns the same object until reset."""
        monkeypatch.chdir(tmp_path)
        first = get_config()
        assert get_config() is first
        reset_config()
        assert get_config() is not first


class TestValidateConfig:
    """Test config validation."""

    def test_valid_config_has_no_issues(self, mock_config: Config):
        """Writable temp paths and ordered thresholds pass."""
        assert validate_config(mock_config) == []

    def test_creates_missing_directories(self, tmp_path: Path):
        """Validation creates the db and log directories."""
        config = Config(db_path=tmp_path / "a" / "k.db", log_path=tmp_path / "b")
        validate_config(config)
        assert (tmp_path / "a").is_dir()
        assert (tmp_path / "b").is_dir()

    def test_inverted_thresholds_flagged_critical(self, mock_config: Config):
        """maintain_after_days >= prune_after_days is CRITICAL."""
        mock_config.maintain_after_days = 200
        issues = validate_config(mock_config)
        assert any(issue.startswith("CRITICAL:") for issue in issues)
