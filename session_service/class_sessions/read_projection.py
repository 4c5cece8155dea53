"""Denormalized read model of class sessions.

Kept eventually consistent by subscribing to committed events on the event
store. Each sync reloads the session from its full history, so the record is
always a disposable copy that can be rebuilt at any time. Class ownership
records are synced separately from class service events.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from session_service.core.eventsourcing import Event, EventStore, Projection
from session_service.class_sessions.aggregate import ClassSession
from session_service.class_sessions.events import (
    CLASS_SESSION_AGGREGATE,
    CLASS_SESSION_CREATED_EVENT,
    CLASS_SESSION_UPDATED_EVENT,
    CLASS_SESSION_VERIFICATION_UPDATED_EVENT,
)
from session_service.class_sessions.models import (
    ApplicationStatus,
    ClassSessionStatus,
    CreateStatus,
    Material,
    UpdateStatus,
    UserMakeRequest,
    UserRole,
)
from session_service.class_sessions.time_slots import intervals_overlap

logger = logging.getLogger(__name__)


@dataclass
class ClassRecord:
    """Class ownership, used for permission checks without asking the class service."""

    class_id: str
    student_id: str
    tutor_id: Optional[str] = None


@dataclass
class ClassSessionRecord:
    id: str
    class_id: str
    tutor_id: Optional[str] = None
    title: str = ""
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
    materials: List[Material] = field(default_factory=list)
    create_status: Optional[CreateStatus] = None
    update_status: Optional[UpdateStatus] = None

    @classmethod
    def from_aggregate(cls, session: ClassSession) -> "ClassSessionRecord":
        return cls(
            id=session.id,
            class_id=session.class_id,
            tutor_id=session.tutor_id,
            title=session.title,
            description=session.description,
            tutor_feedback=session.tutor_feedback,
            is_cancelled=session.is_cancelled,
            created_at=session.created_at,
            updated_at=session.updated_at,
            feedback_updated_at=session.feedback_updated_at,
            start_datetime=session.start_datetime,
            end_datetime=session.end_datetime,
            address=session.address,
            ward_id=session.ward_id,
            location=session.location,
            is_online=session.is_online,
            materials=list(session.materials),
            create_status=session.create_status,
            update_status=session.update_status,
        )


@dataclass
class ClassSessionQuery:
    """Filters for listing sessions."""

    user: UserMakeRequest
    q: Optional[str] = None
    class_id: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    statuses: Optional[List[ClassSessionStatus]] = None
    order: Optional[str] = None
    dir: Optional[str] = None
    page: Optional[int] = None
    limit: Optional[int] = None
    mark_item_id: Optional[str] = None


@dataclass
class ClassSessionPage:
    results: List[ClassSessionRecord]
    total_count: int
    new_page_index: Optional[int] = None


@dataclass
class SessionStatsPerClass:
    non_cancelled_class_sessions_count: int
    scheduled_class_sessions_count: int
    total_count: int


ORDERABLE_FIELDS = ("title", "start_datetime", "end_datetime", "created_at", "updated_at")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClassSessionReadProjection(Projection):
    """In-memory read store for class sessions."""

    def __init__(self, event_store: EventStore):
        super().__init__("class_session_read_projection")
        self._event_store = event_store
        self._sessions: Dict[str, ClassSessionRecord] = {}
        self._classes: Dict[str, ClassRecord] = {}

        for event_type in (
            CLASS_SESSION_CREATED_EVENT,
            CLASS_SESSION_UPDATED_EVENT,
            CLASS_SESSION_VERIFICATION_UPDATED_EVENT,
        ):
            self.register_handler(event_type, self._sync_session)

    async def _sync_session(self, event: Event) -> None:
        await self.sync_session(event.aggregate_id)

    async def sync_session(self, class_session_id: str) -> None:
        """Rebuild one record from the event log."""
        events = await self._event_store.read(class_session_id, CLASS_SESSION_AGGREGATE)
        session = ClassSession.from_events(class_session_id, events)
        if session.is_deleted:
            logger.debug(f"Removing class session {class_session_id} from read store")
            self._sessions.pop(class_session_id, None)
            return
        self._sessions[class_session_id] = ClassSessionRecord.from_aggregate(session)

    # Class ownership sync
    def handle_class_created(self, class_id: str, student_id: str) -> None:
        self._classes[class_id] = ClassRecord(class_id=class_id, student_id=student_id)

    def handle_class_deleted(self, class_id: str) -> None:
        self._classes.pop(class_id, None)

    def handle_class_application_updated(
        self,
        class_id: str,
        tutor_id: str,
        new_status: ApplicationStatus,
    ) -> None:
        if new_status != ApplicationStatus.APPROVED:
            return
        record = self._classes.get(class_id)
        if record is None:
            logger.warning(f"Approved application for unknown class {class_id}")
            return
        record.tutor_id = tutor_id

    def find_class_by_id(self, class_id: str) -> Optional[ClassRecord]:
        return self._classes.get(class_id)

    # Write-side lookups
    def find_overlapping_session(
        self,
        class_id: str,
        start: datetime,
        end: datetime,
        exclude_id: Optional[str] = None,
    ) -> Optional[ClassSessionRecord]:
        """First live session of the class whose interval intersects [start, end)."""
        for record in self._sessions.values():
            if record.class_id != class_id or record.id == exclude_id:
                continue
            if record.is_cancelled or record.create_status == CreateStatus.FAILED:
                continue
            if record.start_datetime is None or record.end_datetime is None:
                continue
            if intervals_overlap(record.start_datetime, record.end_datetime, start, end):
                return record
        return None

    # Queries
    def get_class_session_by_id(
        self,
        class_session_id: str,
        user: UserMakeRequest,
    ) -> Optional[ClassSessionRecord]:
        record = self._sessions.get(class_session_id)
        if record is None or not self._visible_to(record, user):
            return None
        return record

    def get_all_class_sessions(self, query: ClassSessionQuery) -> ClassSessionPage:
        records = self._filter(query, _utcnow())
        records = self._order(records, query.order, query.dir)

        new_page_index = None
        if query.mark_item_id:
            new_page_index = self._page_of_mark_item(records, query.mark_item_id, query.limit or 10)
        page = new_page_index or query.page

        total_count = len(records)
        if page and query.limit:
            offset = (page - 1) * query.limit
            records = records[offset:offset + query.limit]
        return ClassSessionPage(results=records, total_count=total_count, new_page_index=new_page_index)

    def get_sessions_stats_per_class(self, class_id: str, user: UserMakeRequest) -> SessionStatsPerClass:
        now = _utcnow()
        records = self._filter(ClassSessionQuery(user=user, class_id=class_id), now)
        non_cancelled = [r for r in records if not r.is_cancelled]
        scheduled = [r for r in non_cancelled if r.end_datetime and r.end_datetime > now]
        return SessionStatsPerClass(
            non_cancelled_class_sessions_count=len(non_cancelled),
            scheduled_class_sessions_count=len(scheduled),
            total_count=len(records),
        )

    def _visible_to(self, record: ClassSessionRecord, user: UserMakeRequest) -> bool:
        if user.user_role in (UserRole.ADMIN, UserRole.MANAGER):
            return True
        owner = self._classes.get(record.class_id)
        if owner is None or not user.user_id:
            return False
        if user.user_role == UserRole.STUDENT:
            return owner.student_id == user.user_id
        if user.user_role == UserRole.TUTOR:
            return owner.tutor_id == user.user_id
        return False

    def _filter(self, query: ClassSessionQuery, now: datetime) -> List[ClassSessionRecord]:
        results = []
        needle = query.q.lower() if query.q else None
        for record in self._sessions.values():
            # Only sessions that passed creation verification are listed.
            if record.create_status != CreateStatus.CREATED:
                continue
            if query.class_id and record.class_id != query.class_id:
                continue
            if not self._visible_to(record, query.user):
                continue
            if needle and needle not in record.title.lower() and needle not in record.description.lower():
                continue
            if query.start_time and (record.start_datetime is None or record.start_datetime < query.start_time):
                continue
            if query.end_time and (record.end_datetime is None or record.end_datetime > query.end_time):
                continue
            if query.statuses and not self._matches_status(record, query.statuses, now):
                continue
            results.append(record)
        return results

    @staticmethod
    def _matches_status(
        record: ClassSessionRecord,
        statuses: List[ClassSessionStatus],
        now: datetime,
    ) -> bool:
        if ClassSessionStatus.CANCELLED in statuses and record.is_cancelled:
            return True
        if record.is_cancelled or record.end_datetime is None:
            return False
        if ClassSessionStatus.CONCLUDED in statuses and record.end_datetime < now:
            return True
        if ClassSessionStatus.SCHEDULED in statuses and record.end_datetime >= now:
            return True
        return False

    @staticmethod
    def _order(
        records: List[ClassSessionRecord],
        order: Optional[str],
        direction: Optional[str],
    ) -> List[ClassSessionRecord]:
        if not order or not direction or order not in ORDERABLE_FIELDS:
            return records
        reverse = direction.upper() == "DESC"
        present = [r for r in records if getattr(r, order) is not None]
        missing = [r for r in records if getattr(r, order) is None]
        return sorted(present, key=lambda r: getattr(r, order), reverse=reverse) + missing

    @staticmethod
    def _page_of_mark_item(
        records: List[ClassSessionRecord],
        mark_item_id: str,
        limit: int,
    ) -> Optional[int]:
        """Page that holds the marked item when ordered by end time ascending."""
        mark = next((r for r in records if r.id == mark_item_id), None)
        if mark is None or mark.end_datetime is None:
            return None
        rank = sum(
            1 for r in records
            if r.end_datetime is not None and r.end_datetime <= mark.end_datetime
        )
        return math.ceil(rank / limit)

    def __len__(self) -> int:
        return len(self._sessions)
