"""
Stream lifecycle exceptions.
"""

from .base import AimateBaseError


class StreamError(AimateBaseError):
    """Base exception for streaming lifecycle errors."""

    pass


class StreamInterruptedError(StreamError):
    """
    The connection dropped after partial content was received.

    This is a partial success: the runner converts it into a warning and an
    annotated message rather than a failure.
    """

    def __init__(self, message: str, received_chars: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.received_chars = received_chars
        self.user_hint = "The response was interrupted before it finished."


class StreamCancelledError(StreamError):
    """Raised when the shared abort handle was triggered."""

    def __init__(self, message: str = "Stream cancelled", **kwargs):
        super().__init__(message, **kwargs)
        self.user_hint = "The response was stopped."


class StreamStateError(StreamError):
    """Raised on an illegal stream state transition."""

    pass
