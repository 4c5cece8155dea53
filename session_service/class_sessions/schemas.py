"""Request payloads accepted by the class session write side."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from session_service.class_sessions.models import ApplicationStatus, Weekday


class TimeSlotIn(BaseModel):
    start_time: str = Field(..., description="HH:MM or HH:MM:SS")
    end_time: str = Field(..., description="HH:MM or HH:MM:SS")
    weekday: Weekday


class MultipleClassSessionsCreate(BaseModel):
    """Single or recurring creation request.

    With neither ``number_of_sessions_to_create`` nor
    ``end_date_for_recurring_sessions`` a single session is created.
    """

    tutor_id: str
    class_id: str
    title: str = Field(..., min_length=1)
    description: str = ""
    start_date: Optional[date] = None
    time_slots: List[TimeSlotIn] = Field(..., min_length=1)
    number_of_sessions_to_create: Optional[int] = Field(default=None, ge=1)
    end_date_for_recurring_sessions: Optional[date] = None
    address: Optional[str] = None
    ward_id: Optional[str] = None
    is_online: bool = True
    location: Optional[Dict[str, Any]] = None

    @property
    def is_single_session(self) -> bool:
        if self.number_of_sessions_to_create is not None:
            return self.number_of_sessions_to_create == 1
        return self.end_date_for_recurring_sessions is None


class ClassSessionUpdate(BaseModel):
    """Partial update; only fields explicitly sent are applied."""

    title: Optional[str] = None
    description: Optional[str] = None
    is_cancelled: Optional[bool] = None
    start_datetime: Optional[datetime] = None
    end_datetime: Optional[datetime] = None
    address: Optional[str] = None
    ward_id: Optional[str] = None
    is_online: Optional[bool] = None
    location: Optional[Dict[str, Any]] = None
    tutor_feedback: Optional[str] = None

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class VerificationResult(BaseModel):
    class_session_id: str
    is_valid: bool


class DefaultAddressReturned(BaseModel):
    class_session_id: str
    address: Optional[str] = None
    ward_id: Optional[str] = None
    is_online: bool = False


class ClassCreated(BaseModel):
    class_id: str
    student_id: str


class ClassDeleted(BaseModel):
    class_id: str


class ClassApplicationUpdated(BaseModel):
    class_id: str
    tutor_id: str
    new_status: ApplicationStatus
