"""Configuration module for the HeartHeals billing core."""

from heartheals.config.settings import (
    ConfigurationError,
    Settings,
    load_settings,
)

__all__ = [
    "ConfigurationError",
    "Settings",
    "load_settings",
]
