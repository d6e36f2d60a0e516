"""EventBus: synchronous publish/subscribe with per-handler isolation.

Every engine owns one bus; the orchestrator owns the outward one. Handlers
run on the publisher's call stack, one at a time, and a failing handler is
logged and skipped without losing its subscription.
"""

from collections import defaultdict
from typing import Any, Callable, Iterable, Optional

from .logging import get_logger

logger = get_logger("utils.event_bus")


class EventBus:
    """Publish/subscribe fan-out keyed by event category."""

    def __init__(self, name: str, event_types: Optional[Iterable[str]] = None):
        self.name = name
        self._event_types: Optional[frozenset[str]] = (
            frozenset(event_types) if event_types is not None else None
        )
        self._subscribers: dict[str, list[Callable[[Any], Any]]] = defaultdict(list)
        self._total_published: int = 0
        self._total_dispatched: int = 0
        self._total_errors: int = 0

    @property
    def event_types(self) -> Optional[frozenset[str]]:
        return self._event_types

    def _check_event_type(self, event_type: str) -> None:
        if self._event_types is not None and event_type not in self._event_types:
            raise ValueError(
                f"Unknown event type {event_type!r} for bus {self.name!r}; "
                f"expected one of {sorted(self._event_types)}"
            )

    def subscribe(self, event_type: str, handler: Callable[[Any], Any]) -> None:
        """Register a handler. Subscribing the same handler twice is a no-op."""
        if not callable(handler):
            raise TypeError("handler must be callable")
        self._check_event_type(event_type)
        if handler not in self._subscribers[event_type]:
            self._subscribers[event_type].append(handler)
            logger.debug("event_bus_subscriber_added", bus=self.name, event_type=event_type)

    def unsubscribe(self, event_type: str, handler: Callable[[Any], Any]) -> bool:
        """Remove a subscription. Returns False when it was not registered."""
        handlers = self._subscribers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def publish(self, event_type: str, data: Any) -> int:
        """Call every handler of ``event_type`` with ``data``.

        Returns the number of handlers that completed without raising.
        """
        self._check_event_type(event_type)
        self._total_published += 1
        delivered = 0

        # Snapshot so handlers may (un)subscribe while being dispatched
        for handler in list(self._subscribers.get(event_type, [])):
            try:
                handler(data)
                delivered += 1
            except Exception as e:
                self._total_errors += 1
                logger.error(
                    "event_bus_handler_error",
                    bus=self.name,
                    event_type=event_type,
                    error=str(e),
                )

        self._total_dispatched += delivered
        return delivered

    def subscriber_count(self, event_type: Optional[str] = None) -> int:
        if event_type is not None:
            return len(self._subscribers.get(event_type, []))
        return sum(len(v) for v in self._subscribers.values())

    def clear(self) -> None:
        self._subscribers.clear()

    def get_stats(self) -> dict:
        """Return bus statistics."""
        return {
            "name": self.name,
            "total_published": self._total_published,
            "total_dispatched": self._total_dispatched,
            "total_errors": self._total_errors,
            "subscriber_count": self.subscriber_count(),
            "event_types": sorted(k for k, v in self._subscribers.items() if v),
        }
