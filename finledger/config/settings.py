"""
Configuration Management for finledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Services receive the settings object they need through their constructor;
get_settings() is only the default when nothing is injected.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageSettings(BaseSettings):
    """Object storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FINLEDGER_STORAGE_",
        extra="ignore"
    )

    backend: str = Field(
        default="sqlite",
        pattern="^(sqlite|memory)$",
        description="Storage implementation to use"
    )
    database_url: str = Field(
        default="sqlite:///finledger.db",
        description="SQLAlchemy URL of the SQLite database"
    )
    connect_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="How many times to try opening the database"
    )


class SessionSettings(BaseSettings):
    """Session cache configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FINLEDGER_SESSION_",
        extra="ignore"
    )

    cache_dir: str = Field(
        default=".finledger-cache",
        description="Directory holding the durable session cache"
    )
    key_prefix: str = Field(
        default="finledger",
        min_length=1,
        max_length=40,
        description="Prefix for every cache key"
    )
    default_timeout_minutes: int = Field(
        default=60,
        ge=1,
        le=60 * 24 * 30,
        description="Session lifetime when the user has no override"
    )

    @field_validator('key_prefix')
    @classmethod
    def validate_key_prefix(cls, v: str) -> str:
        """Cache keys become file names, so keep them path-safe."""
        if not all(c.isalnum() or c in "-_" for c in v):
            raise ValueError("key_prefix may only contain letters, digits, '-' and '_'")
        return v

    @property
    def cache_path(self) -> Path:
        return Path(self.cache_dir).expanduser()


class SecuritySettings(BaseSettings):
    """Password policy and hashing configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FINLEDGER_SECURITY_",
        extra="ignore"
    )

    password_min_length: int = Field(
        default=8,
        ge=4,
        le=128,
        description="Minimum password length"
    )
    password_max_length: int = Field(
        default=128,
        ge=8,
        le=1024,
        description="Maximum password length"
    )
    hash_rounds: int = Field(
        default=29000,
        ge=1000,
        description="pbkdf2_sha256 iteration count"
    )


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

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    default_currency: str = Field(
        default="IDR",
        min_length=3,
        max_length=3,
        description="ISO 4217 code used when a user has no preference"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for structured logs"
    )

    # Sanity limits for ledger input
    max_transaction_amount: int = Field(
        default=999_999_999_999,
        ge=1,
        description="Largest accepted amount in minor currency units"
    )
    max_description_length: int = Field(
        default=500,
        ge=1,
        description="Longest accepted transaction description"
    )

    @field_validator('default_currency')
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


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

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def session(self) -> SessionSettings:
        return SessionSettings()

    @property
    def security(self) -> SecuritySettings:
        return SecuritySettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus
    {setting_name}_error entries for the ones that failed.
    Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("storage", "session", "security", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except ValueError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
