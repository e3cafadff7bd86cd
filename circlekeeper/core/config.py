"""Configuration management for CircleKeeper.

Loads configuration from environment variables and .env file.
Provides validation and sensible defaults.

Usage:
    from circlekeeper.core.config import get_config, validate_config

    config = get_config()
    issues = validate_config(config)
    if issues:
        for issue in issues:
            print(f"Config issue: {issue}")
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from circlekeeper.core.exceptions import ConfigurationError

# Default paths (defined once, used by both Config and load_config)
DEFAULT_DB_PATH = Path.home() / ".circlekeeper" / "circlekeeper.db"
DEFAULT_LOG_PATH = Path.home() / ".circlekeeper" / "logs"

DEFAULT_CACHE_TTL_SECONDS = 300
DEFAULT_MAINTAIN_AFTER_DAYS = 30
DEFAULT_PRUNE_AFTER_DAYS = 180


@dataclass
class Config:
    """Application configuration.

    Attributes:
        db_path: Path to SQLite database file
        log_path: Directory for log files
        cache_ttl_seconds: Max age of a cached tier suggestion
        maintain_after_days: Days without contact before a tiered contact needs maintenance
        prune_after_days: Days without contact before a tiered contact is a prune candidate
        debug: Enable debug mode
    """

    db_path: Path = field(default_factory=lambda: DEFAULT_DB_PATH)
    log_path: Path = field(default_factory=lambda: DEFAULT_LOG_PATH)
    cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS
    maintain_after_days: int = DEFAULT_MAINTAIN_AFTER_DAYS
    prune_after_days: int = DEFAULT_PRUNE_AFTER_DAYS
    debug: bool = False


def load_env_file(path: Path) -> dict[str, str]:
    """Parse .env file.

    Handles:
        - KEY=VALUE format
        - Comments (lines starting with #)
        - Blank lines
        - Quoted values

    Args:
        path: Path to .env file

    Returns:
        Dictionary of environment variables
    """
    env_vars: dict[str, str] = {}

    if not path.exists():
        return env_vars

    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()

            if not line or line.startswith("#"):
                continue

            if "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                value = value.strip()

                if value and value[0] in ('"', "'") and value[-1] == value[0]:
                    value = value[1:-1]

                if key:
                    env_vars[key] = value

    return env_vars


def _get_path(key: str, default: Path, env_vars: dict[str, str]) -> Path:
    """Get path from environment, expanding ~ and resolving."""
    value = os.environ.get(key) or env_vars.get(key)
    if value:
        return Path(value).expanduser().resolve()
    return default


def _get_int(key: str, default: int, env_vars: dict[str, str]) -> int:
    """Get non-negative integer from environment."""
    value = os.environ.get(key) or env_vars.get(key)
    if value is None or value == "":
        return default
    try:
        parsed = int(value)
    except ValueError as e:
        raise ConfigurationError(f"{key} must be an integer, got {value!r}") from e
    if parsed < 0:
        raise ConfigurationError(f"{key} must not be negative, got {parsed}")
    return parsed


def _get_bool(key: str, default: bool, env_vars: dict[str, str]) -> bool:
    """Get boolean from environment."""
    value = os.environ.get(key) or env_vars.get(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def load_config(env_file: Optional[Path] = None) -> Config:
    """Load configuration from environment and .env file.

    Priority:
        1. Environment variables (highest)
        2. .env file
        3. Default values (lowest)

    Args:
        env_file: Path to .env file. Defaults to .env in current directory.

    Returns:
        Loaded configuration

    Raises:
        ConfigurationError: If a numeric setting cannot be parsed
    """
    if env_file is None:
        env_file = Path.cwd() / ".env"

    env_vars = load_env_file(Path(env_file))

    return Config(
        db_path=_get_path("CIRCLEKEEPER_DB_PATH", DEFAULT_DB_PATH, env_vars),
        log_path=_get_path("CIRCLEKEEPER_LOG_PATH", DEFAULT_LOG_PATH, env_vars),
        cache_ttl_seconds=_get_int(
            "CIRCLEKEEPER_CACHE_TTL_SECONDS", DEFAULT_CACHE_TTL_SECONDS, env_vars
        ),
        maintain_after_days=_get_int(
            "CIRCLEKEEPER_MAINTAIN_AFTER_DAYS", DEFAULT_MAINTAIN_AFTER_DAYS, env_vars
        ),
        prune_after_days=_get_int(
            "CIRCLEKEEPER_PRUNE_AFTER_DAYS", DEFAULT_PRUNE_AFTER_DAYS, env_vars
        ),
        debug=_get_bool("CIRCLEKEEPER_DEBUG", False, env_vars),
    )


def validate_config(config: Config) -> list[str]:
    """Validate configuration.

    Checks:
        - Required paths exist or can be created
        - Paths are writable
        - Review thresholds are ordered

    Args:
        config: Configuration to validate

    Returns:
        List of issues (empty if valid)
    """
    issues: list[str] = []

    db_dir = Path(config.db_path).parent
    try:
        db_dir.mkdir(parents=True, exist_ok=True)
        if not os.access(db_dir, os.W_OK):
            issues.append(f"Database directory not writable: {db_dir}")
    except OSError as e:
        issues.append(f"Cannot create database directory {db_dir}: {e}")

    try:
        Path(config.log_path).mkdir(parents=True, exist_ok=True)
        if not os.access(config.log_path, os.W_OK):
            issues.append(f"Log directory not writable: {config.log_path}")
    except OSError as e:
        issues.append(f"Cannot create log directory {config.log_path}: {e}")

    if config.maintain_after_days >= config.prune_after_days:
        issues.append(
            f"CRITICAL: maintain_after_days ({config.maintain_after_days}) must be "
            f"smaller than prune_after_days ({config.prune_after_days})."
        )

    return issues


# Cached config for the command line entry point
_config: Optional[Config] = None


def get_config() -> Config:
    """Return cached configuration.

    Loads configuration on first call, returns cached version thereafter.

    Returns:
        Application configuration
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Reset cached configuration.

    Used primarily for testing.
    """
    global _config
    _config = None
