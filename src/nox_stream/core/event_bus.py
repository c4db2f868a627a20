"""Async in-process event bus for internal component signals."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable, Coroutine, Type

logger = logging.getLogger(__name__)

Handler = Callable[..., Coroutine[Any, Any, None]]


class EventBus:
    """Type-keyed pub/sub between server components.

    The router publishes agent activity, the chat manager publishes admitted
    viewer messages, and the narration engine listens to both. Handlers for
    one event type run concurrently; a failing handler is logged and never
    affects the others or the publisher.
    """

    def __init__(self) -> None:
        self._handlers: dict[Type, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: Type, handler: Handler) -> None:
        """Register a handler for an event type (idempotent)."""
        if handler not in self._handlers[event_type]:
            self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: Type, handler: Handler) -> None:
        """Remove a handler; unknown handlers are ignored."""
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def handler_count(self, event_type: Type) -> int:
        return len(self._handlers.get(event_type, []))

    async def publish(self, event: Any) -> None:
        """Deliver an event to every handler subscribed to its type."""
        event_type = type(event)
        handlers = list(self._handlers.get(event_type, []))
        if not handlers:
            return

        results = await asyncio.gather(
            *(h(event) for h in handlers),
            return_exceptions=True,
        )
        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                logger.error(
                    "Handler %s raised %s for %s: %s",
                    getattr(handler, "__qualname__", repr(handler)),
                    type(result).__name__,
                    event_type.__name__,
                    result,
                )
