"""Domain events of the class session aggregate.

Each event type carries a fixed set of fields. Update events are partial:
only the keys present in the event data are merged into the aggregate.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from session_service.core.eventsourcing import Event
from session_service.class_sessions.models import CreateStatus, Material, UpdateStatus

CLASS_SESSION_AGGREGATE = "ClassSession"

CLASS_SESSION_CREATED_EVENT = "class-session-created-event"
CLASS_SESSION_UPDATED_EVENT = "class-session-updated-event"
CLASS_SESSION_VERIFICATION_UPDATED_EVENT = "class-session-verification-updated-event"

CREATED_EVENT_FIELDS = (
    "tutor_id",
    "class_id",
    "title",
    "description",
    "created_at",
    "start_datetime",
    "end_datetime",
    "address",
    "ward_id",
    "is_online",
    "location",
    "materials",
    "create_status",
    "update_status",
    "tutor_verified",
    "class_verified",
)

UPDATED_EVENT_FIELDS = (
    "tutor_id",
    "title",
    "description",
    "is_cancelled",
    "start_datetime",
    "end_datetime",
    "address",
    "ward_id",
    "is_online",
    "location",
    "materials",
    "tutor_feedback",
    "updated_at",
    "feedback_updated_at",
    "is_deleted",
)

VERIFICATION_EVENT_FIELDS = (
    "create_status",
    "update_status",
    "tutor_verified",
    "class_verified",
)

ADDRESS_FIELDS = ("address", "ward_id", "is_online")
TIME_FIELDS = ("start_datetime", "end_datetime")

# Update fields that may never be cleared.
NON_NULLABLE_FIELDS = (
    "tutor_id",
    "title",
    "description",
    "is_cancelled",
    "start_datetime",
    "end_datetime",
    "is_online",
    "materials",
    "tutor_feedback",
    "is_deleted",
)

# Metadata "source" of an update written by the system, not by the tutor.
DEFAULT_ADDRESS_SOURCE = "default-address"


@dataclass
class ClassSessionCreateArgs:
    """Input of ``ClassSession.create_new``."""

    tutor_id: str
    class_id: str
    title: str
    start_datetime: datetime
    end_datetime: datetime
    created_at: datetime
    description: str = ""
    address: Optional[str] = None
    ward_id: Optional[str] = None
    is_online: bool = True
    location: Optional[Dict[str, Any]] = None
    materials: List[Material] = field(default_factory=list)

    def to_event_data(self) -> Dict[str, Any]:
        return {
            "tutor_id": self.tutor_id,
            "class_id": self.class_id,
            "title": self.title,
            "description": self.description,
            "created_at": self.created_at,
            "start_datetime": self.start_datetime,
            "end_datetime": self.end_datetime,
            "address": self.address,
            "ward_id": self.ward_id,
            "is_online": self.is_online,
            "location": self.location,
            "materials": [m.to_dict() for m in self.materials],
            # Creation counts as the first settled update.
            "create_status": CreateStatus.CREATE_PENDING.value,
            "update_status": UpdateStatus.UPDATED.value,
            "tutor_verified": False,
            "class_verified": False,
        }


def pick_fields(data: Dict[str, Any], allowed: tuple) -> Dict[str, Any]:
    """Keep only the keys an event type may carry."""
    return {key: value for key, value in data.items() if key in allowed}


def is_content_update(event: Event) -> bool:
    """Tutor-made update events; these bound a revert."""
    return (
        event.event_type == CLASS_SESSION_UPDATED_EVENT
        and not is_default_address_fill(event)
    )


def is_default_address_fill(event: Event) -> bool:
    return (
        event.event_type == CLASS_SESSION_UPDATED_EVENT
        and event.metadata.get("source") == DEFAULT_ADDRESS_SOURCE
    )
