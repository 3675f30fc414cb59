"""Configuration loading from TOML files and environment variables."""

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from prism.config.models import ConfigError, PrismConfig
from prism.config.paths import get_config_path

# (section, key, env var, converter)
ENV_OVERRIDES: list[tuple[str, str, str, type]] = [
    ("broker", "host", "REDIS_HOST", str),
    ("broker", "port", "REDIS_PORT", int),
    ("broker", "password", "REDIS_PASSWORD", str),
    ("broker", "queue", "SCHEDULER_QUEUE", str),
    ("database", "url", "DATABASE_URL", str),
]


def _get_default_config_paths() -> list[Path]:
    """Get ordered list of default config file locations."""
    return [
        Path("prism.toml"),  # Current directory
        get_config_path(),  # ~/.prism/config.toml (or PRISM_HOME)
        Path("/etc/prism/config.toml"),  # System-wide
    ]


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Overlay environment variables onto the raw config dict."""
    for section, key, env_var, convert in ENV_OVERRIDES:
        value = os.environ.get(env_var)
        if not value:
            continue
        try:
            converted = convert(value)
        except ValueError as e:
            raise ConfigError(f"Invalid value for {env_var}: {value!r}") from e
        config.setdefault(section, {})[key] = converted

    if level := os.environ.get("PRISM_LOG_LEVEL"):
        config.setdefault("log_level", level.upper())

    return config


def _find_config_file(path: Path | None) -> Path | None:
    if path is not None:
        config_path = Path(path).expanduser()
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        return config_path

    for default_path in _get_default_config_paths():
        expanded = default_path.expanduser()
        if expanded.exists():
            return expanded
    return None


def load_config(path: Path | None = None) -> PrismConfig:
    """Load configuration from a TOML file plus environment overrides.

    Args:
        path: Explicit path to config file. If None, searches default
            locations and falls back to defaults when none exists.

    Returns:
        Validated PrismConfig instance.

    Raises:
        FileNotFoundError: If an explicit path does not exist.
        ConfigError: If the config file or environment is invalid.
    """
    raw_config: dict[str, Any] = {}

    config_path = _find_config_file(path)
    if config_path is not None:
        try:
            with config_path.open("rb") as f:
                raw_config = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e

    raw_config = _apply_env_overrides(raw_config)

    try:
        return PrismConfig.model_validate(raw_config)
    except ValidationError as e:
        raise ConfigError(str(e)) from e


def get_default_config() -> PrismConfig:
    """Get a default configuration for development/testing."""
    return PrismConfig()
