"""Centralized path management for Prism.

All local state (config, SQLite database, logs) lives under a single base
directory, overridable with the PRISM_HOME environment variable.

Default locations:
- Linux/macOS: ~/.prism
- Windows: %USERPROFILE%\\.prism
"""

import os
from functools import lru_cache
from pathlib import Path

ENV_VAR = "PRISM_HOME"


@lru_cache(maxsize=1)
def get_prism_home() -> Path:
    """Get the base directory for all Prism data.

    Resolution order:
    1. PRISM_HOME environment variable (if set)
    2. Platform default (~/.prism)
    """
    if env_home := os.environ.get(ENV_VAR):
        return Path(env_home).expanduser().resolve()

    return Path.home() / ".prism"


def get_config_path() -> Path:
    """Get the default config file path."""
    return get_prism_home() / "config.toml"


def get_database_path() -> Path:
    """Get the default SQLite database path."""
    return get_prism_home() / "prism.db"


def get_logs_path() -> Path:
    """Get the JSONL log directory."""
    return get_prism_home() / "logs"
