"""Event Sourced Aggregates.

Provides base classes for event-sourced aggregates:
- Aggregate root with per-event-type appliers
- State reconstruction from events
- Repository for loading and saving aggregates
"""

from __future__ import annotations

import copy
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, Type, TypeVar

from session_service.core.errors import AggregateNotFoundError, RevertBoundaryNotFound
from session_service.core.eventsourcing.store import Event, EventStore, create_event

logger = logging.getLogger(__name__)


T = TypeVar('T', bound='Aggregate')


class Aggregate(ABC):
    """Base class for event-sourced aggregates."""

    def __init__(self, aggregate_id: Optional[str] = None):
        self._id = aggregate_id or str(uuid.uuid4())
        self._version = 0
        self._uncommitted_events: List[Event] = []
        self._event_handlers: Dict[str, Callable[[Event], None]] = {}

    @property
    def id(self) -> str:
        return self._id

    @property
    def version(self) -> int:
        return self._version

    @property
    @abstractmethod
    def aggregate_type(self) -> str:
        """Return the aggregate type name."""
        pass

    def _register_handler(self, event_type: str, handler: Callable[[Event], None]) -> None:
        """Register an event handler."""
        self._event_handlers[event_type] = handler

    def apply(self, event: Event) -> None:
        """Apply an event to update state."""
        handler = self._event_handlers.get(event.event_type)
        if handler:
            handler(event)
        else:
            logger.warning(
                f"No handler for {event.event_type} on {self.aggregate_type}",
                extra={"event_type": event.event_type},
            )
        self._version = event.version

    def raise_event(
        self,
        event_type: str,
        data: Dict[str, Any],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Event:
        """Apply a new event and queue it for commit."""
        event = create_event(
            event_type=event_type,
            aggregate_id=self._id,
            aggregate_type=self.aggregate_type,
            data=data,
            metadata=metadata,
        )
        event.version = self._version + 1
        self.apply(event)
        self._uncommitted_events.append(event)
        return event

    def get_uncommitted_events(self) -> List[Event]:
        """Get a deep copy of the events that haven't been persisted."""
        return copy.deepcopy(self._uncommitted_events)

    def mark_events_committed(self) -> None:
        """Mark all events as committed."""
        self._uncommitted_events.clear()

    def load_from_history(self, events: List[Event]) -> None:
        """Reconstruct state from historical events."""
        for event in events:
            self.apply(event)

    @classmethod
    def fold_before_last(
        cls: Type[T],
        aggregate_id: str,
        events: List[Event],
        predicate: Callable[[Event], bool],
    ) -> T:
        """Rebuild the state preceding the last event matching ``predicate``.

        Read-only: the returned aggregate has no uncommitted events.

        Raises:
            RevertBoundaryNotFound: If no event matches.
        """
        for index in range(len(events) - 1, -1, -1):
            if predicate(events[index]):
                aggregate = cls(aggregate_id)
                aggregate.load_from_history(events[:index])
                return aggregate
        raise RevertBoundaryNotFound(aggregate_id)


class AggregateRepository(Generic[T]):
    """Repository for loading and saving aggregates."""

    def __init__(
        self,
        aggregate_class: Type[T],
        event_store: EventStore,
    ):
        self._aggregate_class = aggregate_class
        self._event_store = event_store

    @property
    def event_store(self) -> EventStore:
        return self._event_store

    def _new_aggregate(self, aggregate_id: str) -> T:
        return self._aggregate_class(aggregate_id)

    def _aggregate_type(self, aggregate_id: str) -> str:
        return self._new_aggregate(aggregate_id).aggregate_type

    async def get(self, aggregate_id: str) -> Optional[T]:
        """Load an aggregate by ID.

        Args:
            aggregate_id: Aggregate identifier.

        Returns:
            Aggregate instance or None if not found.
        """
        aggregate = self._new_aggregate(aggregate_id)
        stream = await self._event_store.get_stream(
            aggregate_id=aggregate_id,
            aggregate_type=aggregate.aggregate_type,
        )

        if not stream.events:
            return None

        aggregate.load_from_history(stream.events)
        return aggregate

    async def load_with_history(self, aggregate_id: str) -> Tuple[T, List[Event]]:
        """Load an aggregate together with the events it was folded from.

        Raises:
            AggregateNotFoundError: If the aggregate has no events.
        """
        aggregate = self._new_aggregate(aggregate_id)
        events = await self._event_store.read(aggregate_id, aggregate.aggregate_type)
        aggregate.load_from_history(events)
        return aggregate, events

    async def load(self, aggregate_id: str) -> T:
        """Load an aggregate, raising if it does not exist."""
        aggregate, _ = await self.load_with_history(aggregate_id)
        return aggregate

    async def save(self, aggregate: T) -> List[Event]:
        """Save uncommitted events from an aggregate.

        Returns:
            The events that were committed.
        """
        events = aggregate.get_uncommitted_events()
        if not events:
            return []

        expected_version = aggregate.version - len(events)
        await self._event_store.append(
            aggregate_id=aggregate.id,
            aggregate_type=aggregate.aggregate_type,
            events=events,
            expected_version=expected_version,
        )
        aggregate.mark_events_committed()
        logger.info(
            f"Committed {len(events)} event(s) for {aggregate.aggregate_type} {aggregate.id}",
            extra={"aggregate_type": aggregate.aggregate_type, "events_committed": len(events)},
        )
        return events

    async def exists(self, aggregate_id: str) -> bool:
        """Check if an aggregate exists."""
        version = await self._event_store.get_current_version(
            aggregate_id=aggregate_id,
            aggregate_type=self._aggregate_type(aggregate_id),
        )
        return version > 0


__all__ = ["Aggregate", "AggregateRepository", "AggregateNotFoundError"]
