"""Event Projections.

Read models built from committed events:
- Projection handlers keyed by event type
- Subscription to an event store's commit feed
"""

from __future__ import annotations

import inspect
import logging
from typing import Callable, Dict, List

from session_service.core.eventsourcing.store import Event, EventStore

logger = logging.getLogger(__name__)


class Projection:
    """Base class for event projections."""

    def __init__(self, name: str):
        self.name = name
        self._handlers: Dict[str, Callable] = {}

    def register_handler(self, event_type: str, handler: Callable) -> None:
        """Register an event handler (sync or async)."""
        self._handlers[event_type] = handler

    async def handle(self, event: Event) -> bool:
        """Handle an event.

        Returns:
            True if event was handled.
        """
        handler = self._handlers.get(event.event_type)
        if handler:
            if inspect.iscoroutinefunction(handler):
                await handler(event)
            else:
                handler(event)
            return True
        return False

    async def on_events_committed(self, events: List[Event]) -> None:
        for event in events:
            await self.handle(event)

    def subscribe_to(self, event_store: EventStore) -> None:
        """Keep this projection in sync with every commit on ``event_store``."""
        event_store.subscribe(self.on_events_committed)
        logger.debug(f"Projection {self.name} subscribed to event store")
