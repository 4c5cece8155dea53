from datetime import date
from unittest.mock import MagicMock

import pytest

from session_service.core.config import Settings
from session_service.core.distributed_lock import LockRegistry
from session_service.core.eventsourcing import InMemoryEventStore
from session_service.class_sessions.aggregate import ClassSessionRepository
from session_service.class_sessions.clients import InMemoryFileStorageClient
from session_service.class_sessions.dispatcher import ClassSessionEventDispatcher
from session_service.class_sessions.read_projection import ClassSessionReadProjection
from session_service.class_sessions.schemas import MultipleClassSessionsCreate, TimeSlotIn
from session_service.class_sessions.verification import VerificationCoordinator
from session_service.class_sessions.write_service import ClassSessionWriteService

# 2030-01-07 is a Monday
FUTURE_MONDAY = date(2030, 1, 7)


@pytest.fixture
def settings():
    return Settings(_env_file=None, LOG_JSON=False, LOCK_WAIT_TIMEOUT_SECONDS=None)


@pytest.fixture
def event_store():
    return InMemoryEventStore()


@pytest.fixture
def broadcaster():
    """Records every broadcast(pattern, payload, queues) call."""
    return MagicMock()


@pytest.fixture
def dispatcher(broadcaster):
    return ClassSessionEventDispatcher(broadcaster)


@pytest.fixture
def repository(event_store, dispatcher):
    return ClassSessionRepository(event_store, dispatcher)


@pytest.fixture
def lock_registry():
    return LockRegistry()


@pytest.fixture
def read_projection(event_store):
    projection = ClassSessionReadProjection(event_store)
    projection.subscribe_to(event_store)
    return projection


@pytest.fixture
def file_client():
    return InMemoryFileStorageClient()


@pytest.fixture
def write_service(repository, lock_registry, read_projection, file_client, settings):
    return ClassSessionWriteService(
        repository,
        lock_registry,
        read_projection,
        file_client,
        settings=settings,
    )


@pytest.fixture
def coordinator(repository, lock_registry, file_client, dispatcher):
    return VerificationCoordinator(repository, lock_registry, file_client, dispatcher)


def make_create_request(**overrides) -> MultipleClassSessionsCreate:
    """Single online Monday 10:00-11:00 session on FUTURE_MONDAY by default."""
    data = {
        "tutor_id": "tutor-1",
        "class_id": "class-1",
        "title": "Algebra",
        "description": "Linear equations",
        "start_date": FUTURE_MONDAY,
        "time_slots": [TimeSlotIn(weekday="MONDAY", start_time="10:00", end_time="11:00")],
        "is_online": True,
    }
    data.update(overrides)
    return MultipleClassSessionsCreate(**data)


async def create_verified_session(write_service, coordinator, **overrides):
    """Create one session and pass both verification checks."""
    sessions = await write_service.create_multiple(make_create_request(**overrides))
    session = sessions[0]
    await coordinator.handle_tutor_verified(session.id, True)
    return await coordinator.handle_class_verified(session.id, True)


@pytest.fixture
def create_request():
    return make_create_request


@pytest.fixture
def verified_session(write_service, coordinator):
    """Factory creating a session that already passed verification."""

    async def factory(**overrides):
        return await create_verified_session(write_service, coordinator, **overrides)

    return factory
