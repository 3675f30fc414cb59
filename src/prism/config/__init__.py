"""Configuration module."""

from prism.config.loader import get_default_config, load_config
from prism.config.models import (
    BrokerConfig,
    ConfigError,
    DatabaseConfig,
    NotificationsConfig,
    PrismConfig,
    SchedulerConfig,
)
from prism.config.paths import (
    get_config_path,
    get_database_path,
    get_logs_path,
    get_prism_home,
)

__all__ = [
    "BrokerConfig",
    "ConfigError",
    "DatabaseConfig",
    "NotificationsConfig",
    "PrismConfig",
    "SchedulerConfig",
    "get_config_path",
    "get_database_path",
    "get_default_config",
    "get_logs_path",
    "get_prism_home",
    "load_config",
]
