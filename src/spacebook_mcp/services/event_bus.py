from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Coroutine

logger = logging.getLogger(__name__)

Listener = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]

PRIORITY_CONFLICT_CREATED = "priority_conflict_created"
PRIORITY_CONFLICT_RESOLVED = "priority_conflict_resolved"
BOOKING_STATUS_CHANGED = "booking_status_changed"


class EventBus:
    """Fire-and-forget notification sink for booking events.

    Listeners subscribe to an event type (or "*" for all of them). Events
    are published only after the unit of work that produced them has
    committed; a failing listener is logged and never reaches the caller.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def subscribe(self, event_type: str, listener: Listener) -> None:
        self._listeners.setdefault(event_type, []).append(listener)

    def unsubscribe(self, event_type: str, listener: Listener) -> None:
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)

    async def publish(self, event_type: str, data: dict[str, Any]) -> None:
        """Deliver one event to every matching listener."""
        event = {
            "type": event_type,
            "timestamp": datetime.now().isoformat(),
            **data,
        }

        targets = [*self._listeners.get(event_type, []), *self._listeners.get("*", [])]
        if not targets:
            return

        results = await asyncio.gather(
            *(listener(event) for listener in targets),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.error("Notification listener failed for %s: %s", event_type, result)
