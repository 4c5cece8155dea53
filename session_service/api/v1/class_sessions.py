"""
Class session API endpoints.

Commands go through the write service; reads are served from the
projection. The ``/events`` routes receive results from other services.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict

from session_service.api.dependencies import (
    ServiceContainer,
    get_container,
    get_user_make_request,
)
from session_service.core.errors import NotFoundError, PermissionDeniedError
from session_service.class_sessions.models import (
    ClassSessionStatus,
    CreateStatus,
    UpdateStatus,
    UserMakeRequest,
    UserRole,
)
from session_service.class_sessions.read_projection import ClassSessionQuery
from session_service.class_sessions.schemas import (
    ClassApplicationUpdated,
    ClassCreated,
    ClassDeleted,
    ClassSessionUpdate,
    DefaultAddressReturned,
    MultipleClassSessionsCreate,
    VerificationResult,
)

logger = logging.getLogger(__name__)
router = APIRouter()


class MaterialOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    description: str = ""
    title: Optional[str] = None
    url: Optional[str] = None


class ClassSessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    class_id: str
    tutor_id: Optional[str] = None
    title: str
    description: str = ""
    tutor_feedback: str = ""
    is_cancelled: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    feedback_updated_at: Optional[datetime] = None
    start_datetime: Optional[datetime] = None
    end_datetime: Optional[datetime] = None
    address: Optional[str] = None
    ward_id: Optional[str] = None
    location: Optional[Dict[str, Any]] = None
    is_online: bool = True
    materials: List[MaterialOut] = []
    create_status: Optional[CreateStatus] = None
    update_status: Optional[UpdateStatus] = None


class ClassSessionListResponse(BaseModel):
    total_count: int
    results: List[ClassSessionResponse]
    new_page_index: Optional[int] = None


class SessionStatsResponse(BaseModel):
    non_cancelled_class_sessions_count: int
    scheduled_class_sessions_count: int
    total_count: int


class AckResponse(BaseModel):
    status: str = "ok"


@router.post("", response_model=List[ClassSessionResponse], status_code=201)
async def create_class_sessions(
    payload: MultipleClassSessionsCreate,
    user: UserMakeRequest = Depends(get_user_make_request),
    container: ServiceContainer = Depends(get_container),
):
    """Create a single session or a recurring batch"""
    if user.user_role != UserRole.TUTOR or user.user_id != payload.tutor_id:
        raise PermissionDeniedError("Only the tutor of the class can schedule sessions")
    sessions = await container.write_service.create_multiple(payload)
    return [ClassSessionResponse.model_validate(s) for s in sessions]


@router.get("", response_model=ClassSessionListResponse)
async def query_class_sessions(
    q: Optional[str] = None,
    class_id: Optional[str] = Query(default=None, alias="classId"),
    statuses: Optional[List[ClassSessionStatus]] = Query(default=None),
    start_time: Optional[datetime] = Query(default=None, alias="startTime"),
    end_time: Optional[datetime] = Query(default=None, alias="endTime"),
    order: Optional[str] = None,
    dir: Optional[str] = Query(default=None, pattern="^(ASC|DESC|asc|desc)$"),
    page: Optional[int] = Query(default=None, ge=1),
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    mark_item_id: Optional[str] = Query(default=None, alias="markItemId"),
    user: UserMakeRequest = Depends(get_user_make_request),
    container: ServiceContainer = Depends(get_container),
):
    """Filter, order and paginate sessions visible to the caller"""
    query = ClassSessionQuery(
        user=user,
        q=q,
        class_id=class_id,
        statuses=statuses,
        start_time=start_time,
        end_time=end_time,
        order=order,
        dir=dir,
        page=page,
        limit=limit,
        mark_item_id=mark_item_id,
    )
    result = container.read_projection.get_all_class_sessions(query)
    return ClassSessionListResponse(
        total_count=result.total_count,
        results=[ClassSessionResponse.model_validate(r) for r in result.results],
        new_page_index=result.new_page_index,
    )


@router.get("/class/{class_id}/stats", response_model=SessionStatsResponse)
async def get_sessions_stats_per_class(
    class_id: str,
    user: UserMakeRequest = Depends(get_user_make_request),
    container: ServiceContainer = Depends(get_container),
):
    stats = container.read_projection.get_sessions_stats_per_class(class_id, user)
    return SessionStatsResponse(
        non_cancelled_class_sessions_count=stats.non_cancelled_class_sessions_count,
        scheduled_class_sessions_count=stats.scheduled_class_sessions_count,
        total_count=stats.total_count,
    )


@router.get("/{class_session_id}", response_model=ClassSessionResponse)
async def get_class_session(
    class_session_id: str,
    user: UserMakeRequest = Depends(get_user_make_request),
    container: ServiceContainer = Depends(get_container),
):
    record = container.read_projection.get_class_session_by_id(class_session_id, user)
    if record is None:
        raise NotFoundError(f"Class session {class_session_id} not found")
    return ClassSessionResponse.model_validate(record)


@router.patch("/{class_session_id}", response_model=ClassSessionResponse)
async def update_class_session(
    class_session_id: str,
    payload: ClassSessionUpdate,
    user: UserMakeRequest = Depends(get_user_make_request),
    container: ServiceContainer = Depends(get_container),
):
    """Partially update a session; it stays pending until re-verified"""
    session = await container.write_service.update_class_session(
        class_session_id, payload.changes(), requester=user
    )
    return ClassSessionResponse.model_validate(session)


@router.delete("/{class_session_id}", response_model=ClassSessionResponse)
async def delete_class_session(
    class_session_id: str,
    user: UserMakeRequest = Depends(get_user_make_request),
    container: ServiceContainer = Depends(get_container),
):
    session = await container.write_service.delete_class_session(class_session_id, requester=user)
    return ClassSessionResponse.model_validate(session)


@router.delete(
    "/{class_session_id}/materials/{material_id}",
    response_model=ClassSessionResponse,
)
async def delete_single_material(
    class_session_id: str,
    material_id: str,
    user: UserMakeRequest = Depends(get_user_make_request),
    container: ServiceContainer = Depends(get_container),
):
    session = await container.write_service.delete_single_material(
        class_session_id, material_id, requester=user
    )
    return ClassSessionResponse.model_validate(session)


# Inbound events from other services


@router.post("/events/tutor-verified", response_model=ClassSessionResponse)
async def handle_tutor_verified(
    payload: VerificationResult,
    container: ServiceContainer = Depends(get_container),
):
    session = await container.verification.handle_tutor_verified(
        payload.class_session_id, payload.is_valid
    )
    return ClassSessionResponse.model_validate(session)


@router.post("/events/class-verified", response_model=ClassSessionResponse)
async def handle_class_verified(
    payload: VerificationResult,
    container: ServiceContainer = Depends(get_container),
):
    session = await container.verification.handle_class_verified(
        payload.class_session_id, payload.is_valid
    )
    return ClassSessionResponse.model_validate(session)


@router.post("/events/default-address-returned", response_model=ClassSessionResponse)
async def handle_default_address_returned(
    payload: DefaultAddressReturned,
    container: ServiceContainer = Depends(get_container),
):
    session = await container.write_service.apply_default_address(
        payload.class_session_id,
        payload.address,
        payload.ward_id,
        payload.is_online,
    )
    return ClassSessionResponse.model_validate(session)


@router.post("/events/class-created", response_model=AckResponse)
async def handle_class_created(
    payload: ClassCreated,
    container: ServiceContainer = Depends(get_container),
):
    container.read_projection.handle_class_created(payload.class_id, payload.student_id)
    return AckResponse()


@router.post("/events/class-deleted", response_model=AckResponse)
async def handle_class_deleted(
    payload: ClassDeleted,
    container: ServiceContainer = Depends(get_container),
):
    container.read_projection.handle_class_deleted(payload.class_id)
    return AckResponse()


@router.post("/events/class-application-updated", response_model=AckResponse)
async def handle_class_application_updated(
    payload: ClassApplicationUpdated,
    container: ServiceContainer = Depends(get_container),
):
    container.read_projection.handle_class_application_updated(
        payload.class_id, payload.tutor_id, payload.new_status
    )
    return AckResponse()
