"""
Configuration Management for Household Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """SQLite ledger database configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_DB_",
        extra="ignore"
    )

    path: str = Field(
        default="var/household_ledger.sqlite3",
        description="Path to the SQLite database file"
    )
    busy_timeout_seconds: float = Field(
        default=5.0,
        ge=0.0,
        le=120.0,
        description="How long a statement waits on a locked database"
    )
    journal_mode: str = Field(
        default="WAL",
        description="SQLite journal mode"
    )

    @field_validator('journal_mode')
    @classmethod
    def validate_journal_mode(cls, v: str) -> str:
        allowed = {"DELETE", "TRUNCATE", "PERSIST", "MEMORY", "WAL", "OFF"}
        mode = v.strip().upper()
        if mode not in allowed:
            raise ValueError(f"journal_mode must be one of {sorted(allowed)}")
        return mode

    @property
    def resolved_path(self) -> Path:
        return Path(self.path).expanduser()


class ReceiptParserSettings(BaseSettings):
    """Receipt image parser configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RECEIPT_PARSER_",
        extra="ignore"
    )

    api_key: Optional[str] = Field(
        default=None,
        description="API key for the hosted receipt parser"
    )
    model_name: str = Field(
        default="vision-receipt-v1",
        description="Model used by the hosted receipt parser"
    )
    max_image_size_mb: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum decoded image size in MB"
    )

    @property
    def max_image_size_bytes(self) -> int:
        """Get max image size in bytes."""
        return self.max_image_size_mb * 1024 * 1024


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
    log_level: str = Field(
        default="INFO",
        description="Minimum level for structured logs"
    )

    # Validation thresholds
    future_date_tolerance_days: int = Field(
        default=7,
        description="How many days in the future a receipt date can be"
    )
    max_items_per_receipt: int = Field(
        default=200,
        ge=1,
        description="Maximum number of line items accepted in one confirmation"
    )

    # HTTP
    cors_allow_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        description="Comma-separated list of origins allowed by CORS"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [o.strip() for o in self.cors_allow_origins.split(",") if o.strip()]


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

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def receipt_parser(self) -> ReceiptParserSettings:
        return ReceiptParserSettings()

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

    sections = {
        "database": lambda: settings.database,
        "receipt_parser": lambda: settings.receipt_parser,
        "app": lambda: settings.app,
    }

    for name, load in sections.items():
        try:
            load()
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
