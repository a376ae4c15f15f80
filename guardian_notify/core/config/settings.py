# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Application configuration settings using Pydantic Settings.

Settings are loaded from environment variables (and an optional ``.env``
file) with sensible defaults. Nothing in the rule evaluator hard-codes
timing: per-rule delay windows live in the rule set, while retry, retention
and scheduling knobs live here.

Example:
    >>> from guardian_notify.core.config.settings import get_settings
    >>> settings = get_settings()
    >>> settings.suppression.retention_days
    7
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Self
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LocalDatabaseSettings(BaseSettings):
    """Embedded local store configuration.

    The local store is the device's source of truth while offline. It holds
    queued notifications, suppression records and offline sync items.

    Attributes:
        url: SQLAlchemy async URL (aiosqlite driver).
        echo: Log every SQL statement.
    """

    model_config = SettingsConfigDict(
        env_prefix="LOCAL_DB_",
        extra="ignore",
    )

    url: str = "sqlite+aiosqlite:///./guardian_notify.db"
    echo: bool = False


class DeliverySettings(BaseSettings):
    """Delivery channel and retry configuration.

    Attributes:
        channel: Which DeliveryChannel implementation to use.
        max_attempts: Total send attempts before an item is terminally failed.
        backoff_base_seconds: Delay after the first failed attempt.
        backoff_max_seconds: Upper bound on the retry delay.
        send_timeout_seconds: Timeout for a single channel send.
        webhook_url: Sender gateway endpoint for WebhookChannel.
        webhook_token: Optional bearer token for the gateway.
    """

    model_config = SettingsConfigDict(
        env_prefix="DELIVERY_",
        extra="ignore",
    )

    channel: Literal["webhook", "log"] = "webhook"
    max_attempts: int = Field(default=4, ge=1)
    backoff_base_seconds: float = Field(default=60.0, gt=0)
    backoff_max_seconds: float = Field(default=3600.0, gt=0)
    send_timeout_seconds: float = Field(default=15.0, gt=0)
    webhook_url: str = "http://localhost:8085/v1/messages"
    webhook_token: str | None = None


class SuppressionSettings(BaseSettings):
    """Duplicate suppression ledger configuration.

    Attributes:
        retention_days: Records older than this are pruned.
    """

    model_config = SettingsConfigDict(
        env_prefix="SUPPRESSION_",
        extra="ignore",
    )

    retention_days: int = Field(default=7, ge=1)


class SchedulerSettings(BaseSettings):
    """Background scheduler configuration.

    Attributes:
        tick_seconds: Interval for promotion, dispatch and escalation checks.
        sync_interval_seconds: Interval for background sync passes.
        prune_cron: Cron expression for ledger pruning.
    """

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULER_",
        extra="ignore",
    )

    tick_seconds: int = Field(default=15, ge=1, le=300)
    sync_interval_seconds: int = Field(default=120, ge=5)
    prune_cron: str = "15 2 * * *"


class SyncSettings(BaseSettings):
    """Offline sync engine configuration.

    Attributes:
        backend: Which SyncBackend implementation to use.
        base_url: Base URL of the sync API (http backend).
        api_token: Optional bearer token for the sync API.
        timeout_seconds: Timeout for a single upsert call.
        max_retries: Failed attempts before an item is marked failed.
        backoff_base_seconds: Delay after the first failed attempt.
        backoff_max_seconds: Upper bound on the retry delay.
        device_id: Identifier of this device, stamped on every item.
        reviewer_roles: Roles allowed to resolve conflicts.
    """

    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        extra="ignore",
    )

    backend: Literal["http", "memory"] = "http"
    base_url: str = "http://localhost:8090"
    api_token: str | None = None
    timeout_seconds: float = Field(default=10.0, gt=0)
    max_retries: int = Field(default=5, ge=1)
    backoff_base_seconds: float = Field(default=30.0, gt=0)
    backoff_max_seconds: float = Field(default=1800.0, gt=0)
    device_id: str = "device-local"
    reviewer_roles: list[str] = Field(
        default_factory=lambda: ["school_admin", "platform_admin"]
    )


class Settings(BaseSettings):
    """Main application settings aggregating all subsettings.

    Use get_settings() to obtain a cached singleton instance.

    Attributes:
        environment: Current environment (development, staging, production).
        debug: Enable debug mode.
        log_level: Logging level.
        school_timezone: IANA timezone for allowed hours and suppression dates.
        rules_path: Optional YAML file or directory with rule definitions.
        local_db: Local store settings.
        delivery: Delivery settings.
        suppression: Suppression ledger settings.
        scheduler: Scheduler settings.
        sync: Sync engine settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "DEBUG"
    school_timezone: str = "UTC"
    rules_path: Path | None = None

    local_db: LocalDatabaseSettings = Field(default_factory=LocalDatabaseSettings)
    delivery: DeliverySettings = Field(default_factory=DeliverySettings)
    suppression: SuppressionSettings = Field(default_factory=SuppressionSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)

    @field_validator("school_timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        """Reject unknown IANA timezone names early."""
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value}") from e
        return value

    @model_validator(mode="after")
    def validate_production_settings(self) -> Self:
        """Validate that production settings are properly configured.

        Raises:
            ValueError: If running in production with the in-process sync backend.
        """
        if self.environment == "production" and self.sync.backend == "memory":
            raise ValueError(
                "The in-memory sync backend cannot be used in production. "
                "Set SYNC_BACKEND=http."
            )
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Cached Settings instance.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing or dynamic configuration updates.
    """
    get_settings.cache_clear()
