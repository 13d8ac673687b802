"""Process-wide notification bus.

Publishers never wait on subscribers: synchronous handlers run inline,
coroutine handlers are scheduled on the running loop, and a failing handler
is logged without affecting the publisher or other subscribers.
"""

import asyncio
import inspect
import logging
import threading
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

ENTITIES_CREATED = "entities.created"
DOCUMENT_GENERATED = "document.generated"
PRIORITY_STREAM_CREATED = "priority_stream.created"
MILESTONES_CREATED = "milestones.created"

Handler = Callable[[str, dict[str, Any]], Any]


class EventBus:
    """Loose publish/subscribe bus keyed by event name."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Handler]] = {}
        self._lock = threading.Lock()
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, event: str, handler: Handler) -> Callable[[], None]:
        """Register a handler; returns a callable that unsubscribes it."""
        with self._lock:
            self._subscribers.setdefault(event, []).append(handler)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._subscribers.get(event, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def publish(self, event: str, payload: dict[str, Any] | None = None) -> int:
        """Notify every subscriber of an event.

        Returns:
            Number of handlers notified
        """
        payload = payload or {}
        with self._lock:
            handlers = list(self._subscribers.get(event, []))

        for handler in handlers:
            try:
                result = handler(event, payload)
                if inspect.isawaitable(result):
                    self._schedule(event, result)
            except Exception:
                logger.exception("Subscriber for %s failed", event)

        logger.debug("Published %s to %d subscriber(s)", event, len(handlers))
        return len(handlers)

    def _schedule(self, event: str, awaitable: Any) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)

        def done(finished: asyncio.Task) -> None:
            self._tasks.discard(finished)
            if not finished.cancelled() and finished.exception() is not None:
                logger.error("Async subscriber for %s failed: %s", event, finished.exception())

        task.add_done_callback(done)

    def clear(self) -> None:
        """Drop all subscribers (used by tests)."""
        with self._lock:
            self._subscribers.clear()


_event_bus: EventBus | None = None
_event_bus_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Get or create the global event bus."""
    global _event_bus
    with _event_bus_lock:
        if _event_bus is None:
            _event_bus = EventBus()
        return _event_bus
