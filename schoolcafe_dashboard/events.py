"""
Process-wide publish/subscribe bus.

The benchmark configuration flow and the dashboard do not know about each
other: a successful benchmark save publishes BENCHMARKS_UPDATED and every
attached dashboard refreshes itself.
"""

import logging
from collections import defaultdict
from collections.abc import Callable
from threading import Lock

logger = logging.getLogger(__name__)

BENCHMARKS_UPDATED = "benchmarks-updated"

Handler = Callable[..., None]


class EventBus:
    """Named events with register/unregister semantics."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._lock = Lock()

    def subscribe(self, event: str, handler: Handler) -> None:
        with self._lock:
            if handler not in self._handlers[event]:
                self._handlers[event].append(handler)

    def unsubscribe(self, event: str, handler: Handler) -> None:
        with self._lock:
            if handler in self._handlers.get(event, []):
                self._handlers[event].remove(handler)

    def subscriber_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))

    def publish(self, event: str, **payload) -> int:
        """Call every handler of `event`; returns how many were notified.

        A failing handler is logged and does not stop the others.
        """
        with self._lock:
            handlers = list(self._handlers.get(event, []))

        for handler in handlers:
            try:
                handler(**payload)
            except Exception:
                logger.exception("Handler %r failed for event '%s'", handler, event)

        logger.info("Published '%s' to %d subscriber(s)", event, len(handlers))
        return len(handlers)


bus = EventBus()
