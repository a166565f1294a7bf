#!/usr/bin/env python3
"""
Context Exception Definitions

All context-related exceptions inherit from AimateBaseError.
"""

from .base import AimateBaseError


class ContextError(AimateBaseError):
    """Base exception for context management errors."""

    pass


class AttachmentFetchError(ContextError):
    """Raised when one attachment source cannot be fetched."""

    def __init__(self, message, source=None, item_id=None, original_error=None):
        super().__init__(message, original_error=original_error)
        self.source = source
        self.item_id = item_id


class ConversationNotFoundError(ContextError):
    """Raised when an operation targets a conversation that is not loaded."""

    def __init__(self, message, conversation_id=None):
        super().__init__(message)
        self.conversation_id = conversation_id
