"""
In-memory Event Bus for Domain Events.
Provides a simple publish/subscribe mechanism; delivery is synchronous and
fire-and-forget (handler failures are logged, never raised to the publisher).
"""

import logging
from threading import Lock
from typing import Callable, Dict, List, Type

from tiergate.events.domain_events import DomainEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[DomainEvent], None]


class EventBus:
    def __init__(self) -> None:
        self._subscribers: Dict[Type[DomainEvent], List[EventHandler]] = {}
        self._lock = Lock()

    def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        """
        Subscribes a handler function to a specific event type.
        Args:
            event_type: The type of the DomainEvent to subscribe to. Subscribing
                to DomainEvent itself receives every event.
            handler: A callable that takes a DomainEvent instance as its argument.
        """
        with self._lock:
            self._subscribers.setdefault(event_type, []).append(handler)
        logger.debug(
            f"Subscribed handler {getattr(handler, '__name__', handler)} to {event_type.__name__}"
        )

    def unsubscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        with self._lock:
            handlers = self._subscribers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event: DomainEvent) -> None:
        """
        Publishes an event to all subscribed handlers.
        Args:
            event: The DomainEvent instance to publish.
        """
        logger.debug(f"Publishing event: {event.event_type} (ID: {event.event_id})")

        with self._lock:
            handlers_for_exact_type = list(self._subscribers.get(type(event), []))
            handlers_for_base_type = list(self._subscribers.get(DomainEvent, []))

        for handler in handlers_for_exact_type:
            self._dispatch(handler, event)

        # Generic listeners; avoid double delivery for handlers on both lists
        for handler in handlers_for_base_type:
            if type(event) is not DomainEvent and handler not in handlers_for_exact_type:
                self._dispatch(handler, event)

    def clear(self) -> None:
        with self._lock:
            self._subscribers.clear()

    @staticmethod
    def _dispatch(handler: EventHandler, event: DomainEvent) -> None:
        try:
            handler(event)
        except Exception as e:
            logger.error(
                f"Event handler {getattr(handler, '__name__', handler)} for {type(event).__name__} failed: {e}",
                exc_info=True,
            )


# Global instance of the EventBus
event_bus = EventBus()
