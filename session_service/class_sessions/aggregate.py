"""ClassSession aggregate.

State is a fold over the session's event history. Each event type has its own
applier that merges only the fields the event carries, so a partial update
never blanks out fields it does not mention.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from session_service.core.errors import AggregateNotFoundError
from session_service.core.eventsourcing import Aggregate, AggregateRepository, Event
from session_service.class_sessions.events import (
    CLASS_SESSION_AGGREGATE,
    CLASS_SESSION_CREATED_EVENT,
    CLASS_SESSION_UPDATED_EVENT,
    CLASS_SESSION_VERIFICATION_UPDATED_EVENT,
    CREATED_EVENT_FIELDS,
    UPDATED_EVENT_FIELDS,
    VERIFICATION_EVENT_FIELDS,
    ClassSessionCreateArgs,
    pick_fields,
)
from session_service.class_sessions.models import CreateStatus, Material, UpdateStatus

if TYPE_CHECKING:
    from session_service.class_sessions.dispatcher import ClassSessionEventDispatcher

logger = logging.getLogger(__name__)

STATE_FIELDS = (
    "tutor_id",
    "class_id",
    "title",
    "description",
    "tutor_feedback",
    "created_at",
    "updated_at",
    "feedback_updated_at",
    "start_datetime",
    "end_datetime",
    "is_online",
    "address",
    "ward_id",
    "location",
    "materials",
    "is_cancelled",
    "is_deleted",
    "create_status",
    "update_status",
    "tutor_verified",
    "class_verified",
)


def generate_session_id() -> str:
    return secrets.token_hex(12)


def _to_event_value(key: str, value: Any) -> Any:
    if key == "materials" and value is not None:
        return [m.to_dict() if isinstance(m, Material) else dict(m) for m in value]
    if key in ("create_status", "update_status") and value is not None:
        return value.value if hasattr(value, "value") else value
    return value


def _to_state_value(key: str, value: Any) -> Any:
    if key == "materials":
        return [Material.from_dict(m) for m in (value or [])]
    if key == "create_status" and value is not None:
        return CreateStatus(value)
    if key == "update_status" and value is not None:
        return UpdateStatus(value)
    return value


class ClassSession(Aggregate):
    """Event-sourced class session."""

    def __init__(
        self,
        aggregate_id: Optional[str] = None,
        dispatcher: Optional["ClassSessionEventDispatcher"] = None,
    ):
        super().__init__(aggregate_id or generate_session_id())
        self._dispatcher = dispatcher

        self.tutor_id: Optional[str] = None
        self.class_id: Optional[str] = None
        self.title: str = ""
        self.description: str = ""
        self.tutor_feedback: str = ""
        self.created_at: Optional[datetime] = None
        self.updated_at: Optional[datetime] = None
        self.feedback_updated_at: Optional[datetime] = None
        self.start_datetime: Optional[datetime] = None
        self.end_datetime: Optional[datetime] = None
        self.is_online: bool = True
        self.address: Optional[str] = None
        self.ward_id: Optional[str] = None
        self.location: Optional[Dict[str, Any]] = None
        self.materials: List[Material] = []
        self.is_cancelled: bool = False
        self.is_deleted: bool = False
        self.create_status: Optional[CreateStatus] = None
        self.update_status: Optional[UpdateStatus] = None
        self.tutor_verified: bool = False
        self.class_verified: bool = False

        self._register_handler(CLASS_SESSION_CREATED_EVENT, self._on_created)
        self._register_handler(CLASS_SESSION_UPDATED_EVENT, self._on_updated)
        self._register_handler(
            CLASS_SESSION_VERIFICATION_UPDATED_EVENT, self._on_verification_updated
        )

    @property
    def aggregate_type(self) -> str:
        return CLASS_SESSION_AGGREGATE

    @classmethod
    def create_new(
        cls,
        args: ClassSessionCreateArgs,
        dispatcher: Optional["ClassSessionEventDispatcher"] = None,
    ) -> "ClassSession":
        """Create a session with a fresh id and a pending creation event."""
        session = cls(dispatcher=dispatcher)
        session.raise_event(CLASS_SESSION_CREATED_EVENT, args.to_event_data())
        return session

    @classmethod
    def from_events(
        cls,
        aggregate_id: str,
        events: List[Event],
        dispatcher: Optional["ClassSessionEventDispatcher"] = None,
    ) -> "ClassSession":
        """Rebuild a session from its ordered history."""
        if not events:
            raise AggregateNotFoundError(CLASS_SESSION_AGGREGATE, aggregate_id)
        session = cls(aggregate_id, dispatcher=dispatcher)
        session.load_from_history(events)
        return session

    def update(
        self,
        data: Dict[str, Any],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Event:
        """Append a content update carrying only the given fields."""
        unknown = set(data) - set(UPDATED_EVENT_FIELDS)
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)}")
        payload = {key: _to_event_value(key, value) for key, value in data.items()}
        return self.raise_event(CLASS_SESSION_UPDATED_EVENT, payload, metadata)

    def update_verification(self, data: Dict[str, Any]) -> Event:
        """Append a status/verification change, kept apart from content updates."""
        unknown = set(data) - set(VERIFICATION_EVENT_FIELDS)
        if unknown:
            raise ValueError(f"Not verification fields: {sorted(unknown)}")
        payload = {key: _to_event_value(key, value) for key, value in data.items()}
        return self.raise_event(CLASS_SESSION_VERIFICATION_UPDATED_EVENT, payload)

    def preview(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Return the state dict that would result from merging ``changes``."""
        state = self.to_dict()
        state.update(changes)
        return state

    async def commit_and_publish(
        self,
        repository: AggregateRepository,
        is_first_session_in_batch: bool = False,
        num_sessions_in_batch: int = 1,
    ) -> List[Event]:
        """Persist pending events, then broadcast each one.

        Nothing is broadcast if the commit fails.
        """
        # save() clears the pending list, keep our own copy for publishing
        pending = self.get_uncommitted_events()
        committed = await repository.save(self)

        if self._dispatcher is None:
            return committed

        for event in pending:
            if event.event_type == CLASS_SESSION_CREATED_EVENT:
                self._dispatcher.dispatch_class_session_created(
                    self,
                    is_first_session_in_batch=is_first_session_in_batch,
                    num_sessions_in_batch=num_sessions_in_batch,
                )
            elif event.event_type == CLASS_SESSION_UPDATED_EVENT:
                if event.data.get("is_deleted"):
                    self._dispatcher.dispatch_class_session_deleted(self)
                else:
                    self._dispatcher.dispatch_class_session_updated(self)
            elif event.event_type == CLASS_SESSION_VERIFICATION_UPDATED_EVENT:
                self._dispatcher.dispatch_class_session_verification_updated(self)
        return committed

    def to_dict(self) -> Dict[str, Any]:
        state: Dict[str, Any] = {"id": self.id}
        for key in STATE_FIELDS:
            state[key] = getattr(self, key)
        return state

    def content_fields(self) -> Dict[str, Any]:
        """Current values of every field a content update may carry."""
        return {key: getattr(self, key) for key in UPDATED_EVENT_FIELDS}

    # Event appliers
    def _merge(self, data: Dict[str, Any], allowed: tuple) -> None:
        for key, value in pick_fields(data, allowed).items():
            setattr(self, key, _to_state_value(key, value))

    def _on_created(self, event: Event) -> None:
        self._merge(event.data, CREATED_EVENT_FIELDS)

    def _on_updated(self, event: Event) -> None:
        self._merge(event.data, UPDATED_EVENT_FIELDS)

    def _on_verification_updated(self, event: Event) -> None:
        self._merge(event.data, VERIFICATION_EVENT_FIELDS)


class ClassSessionRepository(AggregateRepository[ClassSession]):
    """Loads and creates sessions wired to the outbound dispatcher."""

    def __init__(self, event_store, dispatcher: Optional["ClassSessionEventDispatcher"] = None):
        super().__init__(ClassSession, event_store)
        self._dispatcher = dispatcher

    def _new_aggregate(self, aggregate_id: str) -> ClassSession:
        return ClassSession(aggregate_id, dispatcher=self._dispatcher)

    def create_new(self, args: ClassSessionCreateArgs) -> ClassSession:
        return ClassSession.create_new(args, dispatcher=self._dispatcher)
