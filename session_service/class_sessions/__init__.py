"""Class session aggregate, verification workflow, write service and read model."""

from session_service.class_sessions.aggregate import ClassSession, ClassSessionRepository
from session_service.class_sessions.dispatcher import (
    ClassSessionEventDispatcher,
    LoggingBroadcaster,
    NullBroadcaster,
)
from session_service.class_sessions.read_projection import (
    ClassSessionQuery,
    ClassSessionReadProjection,
)
from session_service.class_sessions.verification import VerificationCoordinator
from session_service.class_sessions.write_service import ClassSessionWriteService

__all__ = [
    "ClassSession",
    "ClassSessionEventDispatcher",
    "ClassSessionQuery",
    "ClassSessionReadProjection",
    "ClassSessionRepository",
    "ClassSessionWriteService",
    "LoggingBroadcaster",
    "NullBroadcaster",
    "VerificationCoordinator",
]
