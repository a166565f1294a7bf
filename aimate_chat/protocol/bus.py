import logging
import asyncio
from dataclasses import dataclass
from typing import Dict, List, Callable, Any, Awaitable

from aimate_chat.exceptions.bus import EventBusError
from .events import EventTypes

# Type definition for event handlers
EventHandler = Callable[[Any], Awaitable[None]]


@dataclass
class _Subscription:
    handler: EventHandler
    active: bool = True


class EventBus:
    """
    Asynchronous fan-out of conversation events to observers.

    Each event is delivered to the subscriptions that existed when it was
    emitted, one handler at a time, in registration order, so observers see
    deltas in the order they were applied. A subscription cancelled by an
    earlier handler is not called. Handler failures are logged and never
    reach the emitter.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._subscriptions: Dict[EventTypes, List[_Subscription]] = {}
        self._logger = logging.getLogger("EventBus")

    async def subscribe(self, event_type: EventTypes, handler: EventHandler) -> None:
        if not isinstance(event_type, EventTypes):
            raise EventBusError(f"Unknown event type: {event_type!r}")

        async with self._lock:
            self._subscriptions.setdefault(event_type, []).append(_Subscription(handler))

    async def unsubscribe(self, event_type: EventTypes, handler: EventHandler) -> None:
        """Cancel the oldest live subscription of ``handler``; unknown handlers are ignored."""
        async with self._lock:
            subscriptions = self._subscriptions.get(event_type, [])
            for index, subscription in enumerate(subscriptions):
                if subscription.handler == handler:
                    subscription.active = False
                    del subscriptions[index]
                    return

    async def emit(self, event_type: EventTypes, data: Any = None) -> None:
        async with self._lock:
            recipients = tuple(self._subscriptions.get(event_type, ()))

        for subscription in recipients:
            if subscription.active:
                await self._deliver(event_type, subscription.handler, data)

    async def _deliver(self, event_type: EventTypes, handler: EventHandler, data: Any) -> None:
        try:
            await handler(data)
        except Exception:  # pylint: disable=broad-exception-caught
            self._logger.exception(
                "Handler %s failed on %s",
                getattr(handler, "__qualname__", repr(handler)),
                event_type.value,
            )
