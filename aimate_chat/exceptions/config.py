#!/usr/bin/env python3
"""
Configuration Exception Definitions
"""

from .base import AimateBaseError


class ConfigError(AimateBaseError):
    """Raised when configuration is invalid or cannot be loaded."""

    def __init__(self, message, field_name=None, invalid_value=None):
        super().__init__(message, user_hint=message)
        self.field_name = field_name
        self.invalid_value = invalid_value
