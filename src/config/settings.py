"""Application settings using Pydantic Settings.

Centralized configuration for the access-control and workflow core.

The permission matrix and role hierarchy are compiled into rbac.permissions
and rbac.roles; they are application logic and are deliberately NOT
configurable here. Settings only tune caching, rule validation limits,
storage and logging.
"""

import logging
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .database import DatabaseSettings

logger = logging.getLogger(__name__)


class RBACSettings(BaseSettings):
    """Permission Authority configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RBAC_",
        extra="ignore",
    )

    cache_ttl_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Role cache TTL in seconds (5 minutes)",
    )
    cache_max_entries: int = Field(
        default=10000,
        ge=1,
        description="Maximum users held in the role cache",
    )
    bootstrap_first_user: bool = Field(
        default=True,
        description="Grant OWNER to the only user of a fresh installation",
    )
    invalidation_broadcast: bool = Field(
        default=False,
        description="Publish role cache invalidations to other instances via Redis",
    )
    invalidation_channel: str = Field(
        default="rbac:invalidate",
        description="Redis pub/sub channel for invalidation messages",
    )


class RuleEngineSettings(BaseSettings):
    """Workflow rule engine configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RULES_",
        extra="ignore",
    )

    max_condition_depth: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum nesting depth accepted when a rule is saved",
    )
    record_metrics: bool = Field(
        default=True,
        description="Track execution and trigger counts per rule",
    )


class RedisSettings(BaseSettings):
    """Redis configuration for cross-instance cache invalidation."""

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        extra="ignore",
    )

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    db: int = Field(default=0, description="Redis database number")
    password: Optional[str] = Field(default=None, description="Redis password")
    ssl: bool = Field(default=False, description="Use SSL for Redis connection")
    socket_timeout: int = Field(default=5, description="Socket timeout in seconds")

    @property
    def url(self) -> str:
        """Get Redis URL."""
        auth = f":{self.password}@" if self.password else ""
        protocol = "rediss" if self.ssl else "redis"
        return f"{protocol}://{auth}{self.host}:{self.port}/{self.db}"


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        extra="ignore",
    )

    level: str = Field(default="INFO", description="Root log level")
    json_output: bool = Field(default=False, description="Emit JSON log lines")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = Field(default="Ledger Access Core")
    environment: str = Field(
        default="development",
        description="Environment: development, staging, production, test",
    )

    rbac: RBACSettings = Field(default_factory=RBACSettings)
    rules: RuleEngineSettings = Field(default_factory=RuleEngineSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        value = v.lower()
        if value not in allowed:
            raise ValueError(f"environment must be one of {sorted(allowed)}")
        return value

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings instance.

    Returns:
        Settings: Cached settings loaded from environment.
    """
    return Settings()
