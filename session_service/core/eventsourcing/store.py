"""Event Store.

Append-only event log keyed by aggregate id:
- Event persistence with per-stream versioning
- Optimistic concurrency on append
- Post-commit subscribers for read-side synchronization
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from session_service.core.errors import AggregateNotFoundError, ConcurrencyError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Event:
    """Stored domain event."""
    event_id: str
    event_type: str
    aggregate_id: str
    aggregate_type: str
    data: Dict[str, Any]
    metadata: Dict[str, Any] = field(default_factory=dict)
    version: int = 1
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class EventStream:
    """A stream of events for an aggregate."""
    aggregate_id: str
    aggregate_type: str
    events: List[Event] = field(default_factory=list)
    version: int = 0


@dataclass
class AppendResult:
    """Result of appending events."""
    success: bool
    new_version: int
    events_appended: int
    error: Optional[str] = None


EventSubscriber = Callable[[List[Event]], Awaitable[None]]


class EventStore(ABC):
    """Abstract base class for event stores."""

    def __init__(self) -> None:
        self._subscribers: List[EventSubscriber] = []

    def subscribe(self, subscriber: EventSubscriber) -> None:
        """Register a coroutine called with every committed batch."""
        self._subscribers.append(subscriber)

    async def _notify_subscribers(self, events: List[Event]) -> None:
        for subscriber in self._subscribers:
            try:
                await subscriber(events)
            except Exception:
                # Subscribers are read-side consumers; the commit already happened.
                logger.exception(
                    "Event subscriber failed",
                    extra={"aggregate_type": events[0].aggregate_type if events else None},
                )

    @abstractmethod
    async def append(
        self,
        aggregate_id: str,
        aggregate_type: str,
        events: List[Event],
        expected_version: Optional[int] = None,
    ) -> AppendResult:
        """Append events to an aggregate stream atomically.

        Args:
            aggregate_id: Aggregate identifier.
            aggregate_type: Type of aggregate.
            events: Events to append.
            expected_version: Expected current version for optimistic concurrency.

        Returns:
            AppendResult with operation outcome.

        Raises:
            ConcurrencyError: If expected_version doesn't match.
        """
        pass

    @abstractmethod
    async def get_stream(
        self,
        aggregate_id: str,
        aggregate_type: str,
        from_version: int = 0,
        to_version: Optional[int] = None,
    ) -> EventStream:
        """Get events for an aggregate.

        Args:
            aggregate_id: Aggregate identifier.
            aggregate_type: Type of aggregate.
            from_version: Start version (inclusive).
            to_version: End version (inclusive).

        Returns:
            EventStream with matching events, ordered by version.
        """
        pass

    @abstractmethod
    async def get_current_version(
        self,
        aggregate_id: str,
        aggregate_type: str,
    ) -> int:
        """Get current version of an aggregate stream."""
        pass

    async def read(self, aggregate_id: str, aggregate_type: str) -> List[Event]:
        """Return the ordered history of an aggregate.

        Raises:
            AggregateNotFoundError: If no events exist for the id.
        """
        stream = await self.get_stream(aggregate_id, aggregate_type)
        if not stream.events:
            raise AggregateNotFoundError(aggregate_type, aggregate_id)
        return stream.events


class InMemoryEventStore(EventStore):
    """In-memory event store for testing and development."""

    def __init__(self):
        super().__init__()
        # {aggregate_type: {aggregate_id: [events]}}
        self._streams: Dict[str, Dict[str, List[Event]]] = defaultdict(
            lambda: defaultdict(list)
        )
        self._all_events: List[Event] = []
        self._lock: Optional[asyncio.Lock] = None

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def append(
        self,
        aggregate_id: str,
        aggregate_type: str,
        events: List[Event],
        expected_version: Optional[int] = None,
    ) -> AppendResult:
        async with self._get_lock():
            stream = self._streams[aggregate_type][aggregate_id]
            current_version = len(stream)

            if expected_version is not None and expected_version != current_version:
                raise ConcurrencyError(
                    f"Expected version {expected_version}, but current is {current_version}",
                    {"aggregate_id": aggregate_id},
                )

            for i, event in enumerate(events):
                event.version = current_version + i + 1
                event.aggregate_id = aggregate_id
                event.aggregate_type = aggregate_type
                stream.append(event)
                self._all_events.append(event)

            result = AppendResult(
                success=True,
                new_version=current_version + len(events),
                events_appended=len(events),
            )

        if events:
            await self._notify_subscribers(list(events))
        return result

    async def get_stream(
        self,
        aggregate_id: str,
        aggregate_type: str,
        from_version: int = 0,
        to_version: Optional[int] = None,
    ) -> EventStream:
        async with self._get_lock():
            stream = self._streams[aggregate_type].get(aggregate_id, [])

            filtered = [
                e for e in stream
                if e.version >= from_version
                and (to_version is None or e.version <= to_version)
            ]

            return EventStream(
                aggregate_id=aggregate_id,
                aggregate_type=aggregate_type,
                events=filtered,
                version=len(stream),
            )

    async def get_all_events(
        self,
        from_position: int = 0,
        batch_size: int = 100,
        event_types: Optional[List[str]] = None,
    ) -> List[Event]:
        """Get committed events across aggregates in commit order."""
        async with self._get_lock():
            events = self._all_events[from_position:]

            if event_types:
                events = [e for e in events if e.event_type in event_types]

            return events[:batch_size]

    async def get_current_version(
        self,
        aggregate_id: str,
        aggregate_type: str,
    ) -> int:
        async with self._get_lock():
            return len(self._streams[aggregate_type].get(aggregate_id, []))


def create_event(
    event_type: str,
    aggregate_id: str,
    aggregate_type: str,
    data: Dict[str, Any],
    metadata: Optional[Dict[str, Any]] = None,
) -> Event:
    """Helper to create events."""
    return Event(
        event_id=str(uuid.uuid4()),
        event_type=event_type,
        aggregate_id=aggregate_id,
        aggregate_type=aggregate_type,
        data=data,
        metadata=metadata or {},
    )
