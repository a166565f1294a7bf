#!/usr/bin/env python3
"""
Tool Exception Definitions

All tool-related exceptions inherit from AimateBaseError.
"""

from typing import List, Optional

from .base import AimateBaseError


class ToolError(AimateBaseError):
    """Base exception for tool-related errors."""

    pass


class ToolExecutionError(ToolError):
    """Raised when the tool provider reports a failed execution."""

    def __init__(self, message, tool_name=None, server_id=None):
        super().__init__(message, user_hint=message)
        self.tool_name = tool_name
        self.server_id = server_id


class ToolNotFoundError(ToolError):
    """Raised when a requested tool was never discovered on its server."""

    def __init__(self, message, tool_name=None, server_id=None):
        super().__init__(message, user_hint=message)
        self.tool_name = tool_name
        self.server_id = server_id


class ToolInputValidationError(ToolError):
    """Raised when tool parameters fail schema validation."""

    def __init__(self, message, tool_name=None, errors: Optional[List[str]] = None):
        super().__init__(message, user_hint=message)
        self.tool_name = tool_name
        self.errors = list(errors or [])


class ToolStateError(ToolError):
    """Raised on an illegal tool-call status transition."""

    def __init__(self, message, call_id=None, current=None, requested=None):
        super().__init__(message)
        self.call_id = call_id
        self.current = current
        self.requested = requested


class ToolCallNotFoundError(ToolError):
    """Raised when approve/decline targets an unknown tool-call id."""

    def __init__(self, message, call_id=None):
        super().__init__(message)
        self.call_id = call_id
