"""Simple synchronous in-process event bus for conflict outcomes."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable

from callboard.core.logging import get_logger

logger = get_logger(__name__)


class EventBus:
    """Publish/subscribe bus for domain events.

    Handlers are called synchronously in registration order. A failing
    handler is logged and skipped; it never breaks the publisher or the
    handlers after it.
    """

    def __init__(self) -> None:
        self._subscribers: dict[type, list[Callable[[Any], None]]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: Callable[[Any], None]) -> None:
        self._subscribers[event_type].append(handler)

    def publish(self, event: Any) -> int:
        """Deliver *event*; return how many handlers ran without raising."""
        delivered = 0
        for handler in self._subscribers.get(type(event), []):
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s failed for %s",
                    getattr(handler, "__name__", repr(handler)),
                    type(event).__name__,
                )
                continue
            delivered += 1
        return delivered
