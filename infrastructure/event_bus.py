"""
Event bus - in-memory publish/subscribe for domain events
Decouples reservation use cases from whatever reacts to them
"""
from typing import Callable, Dict, List, Optional
from collections import deque
import logging
import threading

from domain.events import DomainEvent, EventPublisher

logger = logging.getLogger(__name__)


class InMemoryEventBus(EventPublisher):
    """
    In-memory event bus

    Usage:
    1. Subscribe: event_bus.subscribe("SessionEnded", handler_func)
    2. Publish: event_bus.publish(SessionEnded(reservation))
    3. Unsubscribe: event_bus.unsubscribe("SessionEnded", handler_func)
    """

    def __init__(self, history_size: int = 100):
        self._subscribers: Dict[str, List[Callable]] = {}
        self._event_history: deque = deque(maxlen=history_size)
        self._subscriber_lock = threading.Lock()

    def subscribe(self, event_type: str, handler: Callable) -> None:
        """
        Subscribe a handler

        Args:
            event_type: event class name (e.g. "SessionStarted")
            handler: callable receiving the event
        """
        with self._subscriber_lock:
            handlers = self._subscribers.setdefault(event_type, [])
            if handler not in handlers:
                handlers.append(handler)
                logger.info(f"Handler {handler.__name__} subscribed to {event_type}")

    def unsubscribe(self, event_type: str, handler: Callable) -> None:
        with self._subscriber_lock:
            if event_type in self._subscribers and handler in self._subscribers[event_type]:
                self._subscribers[event_type].remove(handler)
                logger.info(f"Handler {handler.__name__} unsubscribed from {event_type}")

    def publish(self, event: DomainEvent) -> None:
        """
        Publish an event to its subscribers

        A failing handler does not stop the others
        """
        self._event_history.append(event)

        with self._subscriber_lock:
            handlers = self._subscribers.get(event.event_type, []).copy()

        logger.info(
            f"Publishing {event.event_type} for reservation {event.reservation_id} "
            f"to {len(handlers)} handlers"
        )

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    f"Event handler {handler.__name__} error for {event.event_type}: {e}",
                    exc_info=True
                )

    def get_history(self, event_type: Optional[str] = None, limit: int = 50) -> List[DomainEvent]:
        """Most recent events, optionally filtered by type"""
        events = list(self._event_history)
        if event_type:
            events = [e for e in events if e.event_type == event_type]
        return events[-limit:]

    def clear_history(self) -> None:
        self._event_history.clear()
