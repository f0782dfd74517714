"""
Configuration Module
====================

Centralized configuration management using Pydantic Settings.
Loads from environment variables with type validation and defaults.

Usage:
    from shared.config import settings

    print(settings.environment)
    print(settings.classification.trailing_window_days)
"""

from shared.config.settings import (
    ClassificationSettings,
    Environment,
    LogLevel,
    Settings,
    SnapshotBackend,
    get_settings,
)


# Global settings instance (singleton)
settings = get_settings()

__all__ = [
    "Settings",
    "get_settings",
    "settings",
    "Environment",
    "LogLevel",
    "ClassificationSettings",
    "SnapshotBackend",
]
