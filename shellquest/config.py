"""Centralized configuration for ShellQuest.

All settings are loaded from environment variables with sensible defaults.
Use a .env file or export variables before running.

Example:
    export SHELLQUEST_USER=user
    export SHELLQUEST_SAVE_PATH=~/.shellquest/save.json
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _get_env(key: str, default: str) -> str:
    """Get environment variable with fallback."""
    return os.environ.get(key, default)


def _get_env_int(key: str, default: int) -> int:
    """Get environment variable as integer with fallback."""
    try:
        return int(os.environ.get(key, str(default)))
    except ValueError:
        return default


def _get_env_bool(key: str, default: bool) -> bool:
    """Get environment variable as boolean with fallback."""
    val = os.environ.get(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    if val in ("false", "0", "no", "off"):
        return False
    return default


def _get_env_list(key: str) -> List[str]:
    """Get a comma separated environment variable as a list."""
    return [item.strip() for item in os.environ.get(key, "").split(",") if item.strip()]


# Base paths
PROJECT_ROOT = Path(__file__).resolve().parents[1]
DATA_DIR = PROJECT_ROOT / "data"


@dataclass
class SessionConfig:
    """Player session defaults."""

    default_user: str = field(default_factory=lambda: _get_env("SHELLQUEST_USER", "user"))
    hostname: str = field(
        default_factory=lambda: _get_env("SHELLQUEST_HOSTNAME", "linux-game")
    )
    html_output: bool = field(
        default_factory=lambda: _get_env_bool("SHELLQUEST_HTML_OUTPUT", False)
    )


@dataclass
class SecurityConfig:
    """Elevation denylist and output limits."""

    sudo_denylist_extra: List[str] = field(
        default_factory=lambda: _get_env_list("SHELLQUEST_SUDO_DENYLIST")
    )
    max_output_chars: int = field(
        default_factory=lambda: _get_env_int("SHELLQUEST_MAX_OUTPUT", 100000)
    )


@dataclass
class StorageConfig:
    """Save file location."""

    save_path: Path = field(
        default_factory=lambda: Path(
            _get_env("SHELLQUEST_SAVE_PATH", str(DATA_DIR / "save.json"))
        ).expanduser()
    )


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = field(default_factory=lambda: _get_env("SHELLQUEST_LOG_LEVEL", "WARNING"))
    format: str = field(
        default_factory=lambda: _get_env(
            "SHELLQUEST_LOG_FORMAT",
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )
    )
    file: Optional[Path] = field(
        default_factory=lambda: (
            Path(_get_env("SHELLQUEST_LOG_FILE", ""))
            if _get_env("SHELLQUEST_LOG_FILE", "")
            else None
        )
    )


@dataclass
class MetricsConfig:
    """Prometheus exporter configuration."""

    enabled: bool = field(
        default_factory=lambda: _get_env_bool("SHELLQUEST_METRICS_ENABLED", False)
    )
    host: str = field(default_factory=lambda: _get_env("SHELLQUEST_METRICS_HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: _get_env_int("SHELLQUEST_METRICS_PORT", 9090))


@dataclass
class Config:
    """Main configuration container."""

    session: SessionConfig = field(default_factory=SessionConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)

    # Paths
    project_root: Path = PROJECT_ROOT
    data_dir: Path = DATA_DIR


# Global configuration instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance.

    Creates a new instance if one doesn't exist.
    Configuration is loaded from environment variables.
    """
    global _config
    if _config is None:
        _config = Config()
    return _config


def reload_config() -> Config:
    """Force reload of configuration from environment.

    Useful for testing or dynamic reconfiguration.
    """
    global _config
    _config = Config()
    return _config
