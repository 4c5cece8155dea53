"""Event Sourcing Module.

Provides the event sourcing building blocks used by the write side:
- Event store for persisting events
- Aggregate base classes
- Projections for read models
"""

from session_service.core.eventsourcing.store import (
    Event,
    EventStream,
    AppendResult,
    EventStore,
    EventSubscriber,
    InMemoryEventStore,
    create_event,
)
from session_service.core.eventsourcing.aggregate import (
    Aggregate,
    AggregateRepository,
)
from session_service.core.eventsourcing.projection import Projection

__all__ = [
    # Store
    "Event",
    "EventStream",
    "AppendResult",
    "EventStore",
    "EventSubscriber",
    "InMemoryEventStore",
    "create_event",
    # Aggregate
    "Aggregate",
    "AggregateRepository",
    # Projection
    "Projection",
]
