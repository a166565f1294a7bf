#!/usr/bin/env python3
"""
aiMate Exceptions Package

Unified exception hierarchy for the chat orchestrator.
"""

# Base exceptions
from .base import AimateBaseError

# Provider exceptions
from .provider import (
    ProviderError,
    ProviderConnectionError,
    ProviderTimeoutError,
    ProviderAuthenticationError,
    ProviderServerError,
    ProviderRateLimitError,
    ProviderModelNotFoundError,
    ProviderResponseError,
    ProviderConfigurationError,
)

# Stream exceptions
from .stream import (
    StreamError,
    StreamInterruptedError,
    StreamCancelledError,
    StreamStateError,
)

# Tool exceptions
from .tools import (
    ToolError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolInputValidationError,
    ToolStateError,
    ToolCallNotFoundError,
)

# Context exceptions
from .context import (
    ContextError,
    AttachmentFetchError,
    ConversationNotFoundError,
)

# Config / bus exceptions
from .config import ConfigError
from .bus import EventBusError


__all__ = [
    # Base
    "AimateBaseError",
    # Provider
    "ProviderError",
    "ProviderConnectionError",
    "ProviderTimeoutError",
    "ProviderAuthenticationError",
    "ProviderServerError",
    "ProviderRateLimitError",
    "ProviderModelNotFoundError",
    "ProviderResponseError",
    "ProviderConfigurationError",
    # Stream
    "StreamError",
    "StreamInterruptedError",
    "StreamCancelledError",
    "StreamStateError",
    # Tool
    "ToolError",
    "ToolExecutionError",
    "ToolNotFoundError",
    "ToolInputValidationError",
    "ToolStateError",
    "ToolCallNotFoundError",
    # Context
    "ContextError",
    "AttachmentFetchError",
    "ConversationNotFoundError",
    # Config / bus
    "ConfigError",
    "EventBusError",
]
