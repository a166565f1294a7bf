#!/usr/bin/env python3
"""
Base Exception Contract for aiMate
==================================

Single source of truth for the error contract.
All domain-specific exceptions must inherit from AimateBaseError.
"""

from typing import Optional


class AimateBaseError(Exception):
    """
    The Base Contract for all aiMate errors.

    ``retryable`` tells the stream runner whether another attempt may
    succeed. Most errors are terminal.
    """

    retryable = False

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
        user_hint: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.original_error = original_error
        self.user_hint = user_hint or "An internal error occurred."
        self.details = details or {}
