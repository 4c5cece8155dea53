"""Outbound broadcasts of class session changes.

The dispatcher turns committed aggregate state into payloads for other
services (verifiers, notifications, the class service). It is constructed
once at startup and handed to the repository.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol

if TYPE_CHECKING:
    from session_service.class_sessions.aggregate import ClassSession

logger = logging.getLogger(__name__)

CLASS_SESSION_CREATED = "class_session_created"
CLASS_SESSION_UPDATED = "class_session_updated"
CLASS_SESSION_DELETED = "class_session_deleted"
CLASS_SESSION_VERIFICATION_UPDATED = "class_session_verification_updated"
CLASS_SESSION_DEFAULT_ADDRESS_QUERY = "class_session_default_address_query"

CLASS_AND_CATEGORY_QUEUE = "class_and_category"


class Broadcaster(Protocol):
    """Port for publishing messages to other services."""

    def broadcast(
        self,
        pattern: str,
        payload: Dict[str, Any],
        queues: Optional[List[str]] = None,
    ) -> None:
        """Send ``payload`` to all services, or only ``queues`` when given."""


class NullBroadcaster:
    """No-op broadcaster used when fan-out is disabled."""

    def broadcast(self, pattern, payload, queues=None) -> None:  # noqa: ARG002
        return


class LoggingBroadcaster:
    """Emit broadcast payloads to structured logs."""

    def __init__(self, logger_name: str = "session_service.broadcast"):
        self._logger = logging.getLogger(logger_name)

    def broadcast(
        self,
        pattern: str,
        payload: Dict[str, Any],
        queues: Optional[List[str]] = None,
    ) -> None:
        self._logger.info(
            "broadcast",
            extra={
                "pattern": pattern,
                "payload": payload,
                "queues": queues or ["*"],
            },
        )


class ClassSessionEventDispatcher:
    def __init__(self, broadcaster: Broadcaster):
        self._broadcaster = broadcaster

    def dispatch_class_session_created(
        self,
        session: "ClassSession",
        is_first_session_in_batch: bool = False,
        num_sessions_in_batch: int = 1,
    ) -> None:
        payload = {
            "class_session_id": session.id,
            "tutor_id": session.tutor_id,
            "class_id": session.class_id,
            "title": session.title,
            "start_datetime": session.start_datetime,
            "end_datetime": session.end_datetime,
            "created_at": session.created_at,
            "is_first_session_in_batch": is_first_session_in_batch,
            "num_of_sessions_created_in_batch": num_sessions_in_batch,
        }
        self._broadcaster.broadcast(CLASS_SESSION_CREATED, payload)

    def dispatch_class_session_updated(self, session: "ClassSession") -> None:
        payload = {
            "class_session_id": session.id,
            "tutor_id": session.tutor_id,
            "class_id": session.class_id,
            "title": session.title,
            "start_datetime": session.start_datetime,
            "end_datetime": session.end_datetime,
            "updated_at": session.updated_at,
            "tutor_feedback": session.tutor_feedback,
            "feedback_updated_at": session.feedback_updated_at,
            "is_cancelled": session.is_cancelled,
        }
        self._broadcaster.broadcast(CLASS_SESSION_UPDATED, payload)

    def dispatch_class_session_deleted(self, session: "ClassSession") -> None:
        payload = {
            "class_session_id": session.id,
            "tutor_id": session.tutor_id,
            "class_id": session.class_id,
            "title": session.title,
            "start_datetime": session.start_datetime,
            "end_datetime": session.end_datetime,
            "updated_at": session.updated_at,
        }
        self._broadcaster.broadcast(CLASS_SESSION_DELETED, payload)

    def dispatch_class_session_verification_updated(self, session: "ClassSession") -> None:
        payload = {
            "class_session_id": session.id,
            "class_id": session.class_id,
            "create_status": session.create_status.value if session.create_status else None,
            "update_status": session.update_status.value if session.update_status else None,
            "tutor_verified": session.tutor_verified,
            "class_verified": session.class_verified,
        }
        self._broadcaster.broadcast(CLASS_SESSION_VERIFICATION_UPDATED, payload)

    def dispatch_default_address_query(self, session: "ClassSession") -> None:
        payload = {"class_session_id": session.id, "class_id": session.class_id}
        self._broadcaster.broadcast(
            CLASS_SESSION_DEFAULT_ADDRESS_QUERY,
            payload,
            [CLASS_AND_CATEGORY_QUEUE],
        )
        logger.info(
            f"Default address requested for session {session.id}",
            extra={"class_id": session.class_id},
        )
