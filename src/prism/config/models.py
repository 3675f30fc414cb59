"""Configuration models using Pydantic."""

from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, SecretStr, field_validator

from prism.config.paths import get_database_path


class ConfigError(Exception):
    """Configuration error."""

    pass


class BrokerConfig(BaseModel):
    """Connection descriptor for the Redis job broker."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: SecretStr | None = None
    queue: str = "prism-scheduler"
    # Seconds to wait for the initial connection before degrading
    connect_timeout: float = 2.0


class SchedulerConfig(BaseModel):
    """Configuration for the scheduler worker."""

    poll_interval: float = Field(default=0.5, gt=0)
    # IANA timezone used to evaluate cron expressions
    timezone: str = "UTC"
    batch_size: int = Field(default=50, ge=1)
    # Max job handlers executing at once
    concurrency: int = Field(default=4, ge=1)

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value!r}") from e
        return value


class DatabaseConfig(BaseModel):
    """Configuration for the notification store.

    `url` takes precedence; otherwise a SQLite file at `path` is used.
    """

    url: str | None = None
    path: Path = Field(default_factory=get_database_path)


class NotificationsConfig(BaseModel):
    """Configuration for notification delivery."""

    default_channel: str = "default"
    # Pending pushes buffered per realtime session before dropping
    session_queue_size: int = Field(default=100, ge=1)


class PrismConfig(BaseModel):
    """Root configuration model."""

    log_level: str | None = None
    broker: BrokerConfig = Field(default_factory=BrokerConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
