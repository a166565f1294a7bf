"""
Configuration Module.
Exposes the Settings object and the loader.
"""

from .settings import (
    CompressionSettings,
    ConnectionSettings,
    PersonalisationSettings,
    RetrySettings,
    Settings,
    load_settings,
)

__all__ = [
    "CompressionSettings",
    "ConnectionSettings",
    "PersonalisationSettings",
    "RetrySettings",
    "Settings",
    "load_settings",
]
