"""In-process pub-sub for pipeline domain events.

Stages publish ``DomainEvent`` instances (issue detected, fix generated,
patches applied, status changed) without knowing who listens.  A failing
subscriber is logged and skipped so it can never break a pipeline run.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Callable

from cro_autofix.domain.events import DomainEvent

logger = logging.getLogger(__name__)

Handler = Callable[[DomainEvent], None]


class EventBus:
    """Thread-safe synchronous event bus.

    Global handlers run first, then handlers registered for the exact event
    type, each group in registration order.

    Usage::

        bus = EventBus()
        bus.subscribe(FixStatusChanged, notify_reviewers)
        bus.publish(FixStatusChanged(fix_id="fix_1", ...))
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[type[DomainEvent], list[Handler]] = defaultdict(list)
        self._global_handlers: list[Handler] = []
        self._published = 0

    def subscribe(self, event_type: type[DomainEvent], handler: Handler) -> None:
        """Call *handler* for every event of exactly *event_type*."""
        with self._lock:
            self._handlers[event_type].append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        """Call *handler* for every published event."""
        with self._lock:
            self._global_handlers.append(handler)

    def unsubscribe(self, event_type: type[DomainEvent], handler: Handler) -> bool:
        """Remove *handler* from *event_type*. Returns ``True`` if it was registered."""
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)
                return True
            return False

    def publish(self, event: DomainEvent) -> None:
        """Deliver *event* to matching handlers outside the lock."""
        with self._lock:
            targets = list(self._global_handlers) + list(self._handlers.get(type(event), []))
            self._published += 1

        for handler in targets:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Event handler %r failed for %s", handler, type(event).__name__
                )

    @property
    def published_count(self) -> int:
        with self._lock:
            return self._published

    def clear(self) -> None:
        """Remove all registered handlers."""
        with self._lock:
            self._handlers.clear()
            self._global_handlers.clear()
