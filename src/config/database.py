"""Database configuration using Pydantic Settings.

Supports PostgreSQL (production) and SQLite (development/testing) for the
role-assignment and business-rule stores. Configuration is loaded from
environment variables with sensible defaults.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """
    Database configuration settings.

    All settings can be overridden via environment variables with DB_ prefix.

    Example environment variables:
        DB_DRIVER=postgresql+psycopg2
        DB_HOST=localhost
        DB_PORT=5432
        DB_NAME=ledger
        DB_USER=ledger
        DB_PASSWORD=secret
    """

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    driver: str = Field(
        default="sqlite",
        description="Database driver (postgresql+psycopg2 or sqlite)"
    )

    # PostgreSQL settings
    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    name: str = Field(default="ledger", description="Database name")
    user: str = Field(default="", description="Database user")
    password: str = Field(default="", description="Database password")

    # SQLite settings (for development/testing)
    sqlite_path: Path = Field(
        default=Path("data/ledger_access.db"),
        description="Path to SQLite database file"
    )

    # Connection pool settings (PostgreSQL only)
    pool_size: int = Field(default=5, ge=1, le=100)
    max_overflow: int = Field(default=10, ge=0, le=100)
    pool_pre_ping: bool = Field(default=True)

    echo_sql: bool = Field(
        default=False,
        description="Log all SQL statements (for debugging)"
    )

    @computed_field
    @property
    def is_sqlite(self) -> bool:
        """Check if using SQLite."""
        return "sqlite" in self.driver.lower()

    @computed_field
    @property
    def url(self) -> str:
        """Synchronous SQLAlchemy URL."""
        if self.is_sqlite:
            return f"sqlite:///{self.sqlite_path}"

        auth = ""
        if self.user:
            auth = f"{self.user}"
            if self.password:
                auth += f":{self.password}"
            auth += "@"

        return f"{self.driver}://{auth}{self.host}:{self.port}/{self.name}"


@lru_cache
def get_database_settings() -> DatabaseSettings:
    """Get cached database settings instance."""
    return DatabaseSettings()
