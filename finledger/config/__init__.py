"""Configuration package."""

from finledger.config.settings import (
    AppSettings,
    SecuritySettings,
    SessionSettings,
    Settings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "SecuritySettings",
    "SessionSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
    "validate_all_settings",
]
