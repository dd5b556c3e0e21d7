"""
Configuration Management for Cost Manager

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Where the database lives, what it is called and how logs look
are all validated at startup, not discovered at first use.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


IN_MEMORY = ":memory:"


class StorageSettings(BaseSettings):
    """Local object store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="COST_MANAGER_STORAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    data_dir: str = Field(
        default="data",
        description="Directory holding one SQLite file per database, or ':memory:'"
    )
    database_name: str = Field(
        default="CostManagerDB",
        min_length=1,
        description="Name of the cost database"
    )
    database_version: int = Field(
        default=1,
        ge=1,
        description="Schema version requested on open"
    )
    cost_table_name: str = Field(
        default="costItems",
        min_length=1,
        description="Table holding cost items"
    )
    busy_timeout: float = Field(
        default=5.0,
        ge=0,
        description="Seconds to wait for another connection's lock before failing"
    )

    @field_validator('data_dir')
    @classmethod
    def validate_data_dir(cls, v: str) -> str:
        """Reject a data_dir that points at an existing regular file."""
        if v != IN_MEMORY and Path(v).is_file():
            raise ValueError(f"data_dir must be a directory, got file: {v}")
        return v

    def database_path(self, name: str) -> str:
        """Get the file location for a database name."""
        if self.data_dir == IN_MEMORY:
            return IN_MEMORY
        return str(Path(self.data_dir) / f"{name}.sqlite3")


class LoggingSettings(BaseSettings):
    """Structured logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="COST_MANAGER_LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    level: str = Field(
        default="INFO",
        description="Minimum log level"
    )
    json_output: bool = Field(
        default=True,
        description="Render log lines as JSON (False = human readable console)"
    )

    @field_validator('level')
    @classmethod
    def validate_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"Unsupported log level: {v}. Allowed: {sorted(allowed)}")
        return v.upper()


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are built on access so a broken group
    # does not prevent the others from loading

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def logging(self) -> LoggingSettings:
        return LoggingSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("storage", "logging", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
