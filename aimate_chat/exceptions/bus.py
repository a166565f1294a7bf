from .base import AimateBaseError


class EventBusError(AimateBaseError):
    """
    Critical failure in the event distribution system.

    Used when a handler is registered for something that is not an event type.
    """

    pass
