#!/usr/bin/env python3
"""
Provider Exception Classes
==========================

Errors raised while talking to the model inference endpoint. The
``category`` attribute is the short classification surfaced to the user
(authentication, model_not_found, timeout, network, server).
"""

from typing import List, Optional

from .base import AimateBaseError


class ProviderError(AimateBaseError):
    """
    Base exception for all provider-related errors.
    """

    category = "server"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        model_name: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.status_code = status_code

        if status_code is not None:
            self.details.setdefault("status_code", status_code)
        if model_name:
            self.details.setdefault("model_name", model_name)


class ProviderConnectionError(ProviderError):
    """Raised on network/transport failures (DNS, refused, reset)."""

    category = "network"
    retryable = True

    def __init__(self, message: str, **kwargs):
        super().__init__(message, **kwargs)
        self.user_hint = (
            "Could not reach the model server. "
            "Check your network connection and the connection URL."
        )


class ProviderTimeoutError(ProviderError):
    """Raised when the whole request exceeds its time budget."""

    category = "timeout"
    retryable = True

    def __init__(self, message: str, timeout_seconds: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.timeout_seconds = timeout_seconds
        self.user_hint = "The model server took too long to respond."


class ProviderAuthenticationError(ProviderError):
    """Raised on 401/403. Never retried."""

    category = "authentication"

    def __init__(self, message: str, **kwargs):
        super().__init__(message, **kwargs)
        self.user_hint = (
            "Authentication with the model server failed. "
            "Check the API key configured for this connection."
        )


class ProviderServerError(ProviderError):
    """Raised on 5xx responses."""

    category = "server"
    retryable = True

    def __init__(self, message: str, **kwargs):
        super().__init__(message, **kwargs)
        self.user_hint = "The model server returned an error. Please try again."


class ProviderRateLimitError(ProviderError):
    """Raised on 429 responses."""

    category = "server"
    retryable = True

    def __init__(self, message: str, retry_after: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        if retry_after is not None:
            self.details["retry_after"] = retry_after
        self.user_hint = "Rate limit exceeded. Please wait before trying again."


class ProviderModelNotFoundError(ProviderError):
    """Raised on 404. ``available_models`` is filled in by a best-effort model listing."""

    category = "model_not_found"

    def __init__(
        self, message: str, available_models: Optional[List[str]] = None, **kwargs
    ):
        super().__init__(message, **kwargs)
        self.available_models = list(available_models or [])
        self.user_hint = "The requested model was not found on the model server."


class ProviderResponseError(ProviderError):
    """Raised when the server answers with an unusable response (other 4xx, error frames)."""

    category = "server"

    def __init__(self, message: str, **kwargs):
        super().__init__(message, **kwargs)
        self.user_hint = "The model server returned an invalid response."


class ProviderConfigurationError(ProviderError):
    """Raised when no usable connection is configured."""

    category = "server"

    def __init__(self, message: str, **kwargs):
        super().__init__(message, **kwargs)
        self.user_hint = (
            "No model server connection is configured. "
            "Add and enable a connection first."
        )
