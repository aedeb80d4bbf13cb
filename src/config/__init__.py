"""Configuration module for the access-control core."""

from .database import DatabaseSettings, get_database_settings
from .settings import (
    LoggingSettings,
    RBACSettings,
    RedisSettings,
    RuleEngineSettings,
    Settings,
    get_settings,
)

__all__ = [
    "DatabaseSettings",
    "get_database_settings",
    "LoggingSettings",
    "RBACSettings",
    "RedisSettings",
    "RuleEngineSettings",
    "Settings",
    "get_settings",
]
