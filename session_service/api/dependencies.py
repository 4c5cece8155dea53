"""Service wiring and request dependencies."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, Request

from session_service.core.config import Settings, get_settings
from session_service.core.distributed_lock import LockRegistry
from session_service.core.eventsourcing import EventStore, InMemoryEventStore
from session_service.class_sessions.aggregate import ClassSessionRepository
from session_service.class_sessions.clients import (
    FileStorageClient,
    HttpFileStorageClient,
    InMemoryFileStorageClient,
)
from session_service.class_sessions.dispatcher import (
    Broadcaster,
    ClassSessionEventDispatcher,
    LoggingBroadcaster,
)
from session_service.class_sessions.models import UserMakeRequest, UserRole
from session_service.class_sessions.read_projection import ClassSessionReadProjection
from session_service.class_sessions.verification import VerificationCoordinator
from session_service.class_sessions.write_service import ClassSessionWriteService


@dataclass
class ServiceContainer:
    settings: Settings
    event_store: EventStore
    lock_registry: LockRegistry
    dispatcher: ClassSessionEventDispatcher
    repository: ClassSessionRepository
    read_projection: ClassSessionReadProjection
    file_client: FileStorageClient
    write_service: ClassSessionWriteService
    verification: VerificationCoordinator

    async def aclose(self) -> None:
        if isinstance(self.file_client, HttpFileStorageClient):
            await self.file_client.aclose()


def build_file_client(settings: Settings) -> FileStorageClient:
    if settings.FILE_STORAGE_BACKEND == "http":
        return HttpFileStorageClient(
            settings.FILE_SERVICE_URL,
            timeout=settings.FILE_SERVICE_TIMEOUT_SECONDS,
        )
    return InMemoryFileStorageClient()


def build_container(
    settings: Optional[Settings] = None,
    broadcaster: Optional[Broadcaster] = None,
    file_client: Optional[FileStorageClient] = None,
) -> ServiceContainer:
    """Wire the write and read sides together over one event store."""
    settings = settings or get_settings()
    event_store = InMemoryEventStore()
    lock_registry = LockRegistry(wait_timeout=settings.LOCK_WAIT_TIMEOUT_SECONDS)
    dispatcher = ClassSessionEventDispatcher(broadcaster or LoggingBroadcaster())
    repository = ClassSessionRepository(event_store, dispatcher)

    read_projection = ClassSessionReadProjection(event_store)
    read_projection.subscribe_to(event_store)

    file_client = file_client or build_file_client(settings)
    write_service = ClassSessionWriteService(
        repository,
        lock_registry,
        read_projection,
        file_client,
        settings=settings,
    )
    verification = VerificationCoordinator(repository, lock_registry, file_client, dispatcher)

    return ServiceContainer(
        settings=settings,
        event_store=event_store,
        lock_registry=lock_registry,
        dispatcher=dispatcher,
        repository=repository,
        read_projection=read_projection,
        file_client=file_client,
        write_service=write_service,
        verification=verification,
    )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


async def get_user_make_request(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    x_user_role: Optional[str] = Header(default=None, alias="X-User-Role"),
) -> UserMakeRequest:
    """Caller identity forwarded by the gateway."""
    if not x_user_role:
        raise HTTPException(status_code=401, detail="Missing X-User-Role header")
    try:
        role = UserRole(x_user_role.upper())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown role: {x_user_role}") from None
    return UserMakeRequest(user_id=x_user_id, user_role=role)
