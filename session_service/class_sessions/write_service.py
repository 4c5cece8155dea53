"""Command side of the class session service.

Features:
- Single and recurring session creation from weekly time slots
- Partial updates that re-enter update verification
- Soft deletion and material removal with file cleanup
- Default address completion for offline sessions

Every command runs its load-validate-commit cycle under the per-session lock
(creation locks the whole class so concurrent batches cannot interleave).
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from session_service.core.config import Settings, get_settings
from session_service.core.distributed_lock import LockRegistry
from session_service.core.errors import (
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from session_service.core.logging import bind_aggregate_id
from session_service.class_sessions.aggregate import ClassSession, ClassSessionRepository
from session_service.class_sessions.clients import FileStorageClient, FileUpload
from session_service.class_sessions.events import (
    ADDRESS_FIELDS,
    DEFAULT_ADDRESS_SOURCE,
    NON_NULLABLE_FIELDS,
    TIME_FIELDS,
    ClassSessionCreateArgs,
)
from session_service.class_sessions.models import (
    CreateStatus,
    UpdateStatus,
    UserMakeRequest,
    UserRole,
    validate_class_and_session_address,
)
from session_service.class_sessions.read_projection import ClassSessionReadProjection
from session_service.class_sessions.schemas import MultipleClassSessionsCreate
from session_service.class_sessions.time_slots import (
    TimeSlot,
    get_next_day,
    get_next_occurrence,
    intervals_overlap,
    sanitize_time_slots,
    set_time_to_date,
    validate_time_slot_duration,
    weekday_number_of,
)
from session_service.class_sessions.verification import begin_update_verification

logger = logging.getLogger(__name__)

ADDRESS_REQUIRED_MESSAGE = "Address and ward are both required for an offline session"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def class_lock_key(class_id: str) -> str:
    return f"class:{class_id}"


class ClassSessionWriteService:
    """Applies commands to class session aggregates."""

    def __init__(
        self,
        repository: ClassSessionRepository,
        lock_registry: LockRegistry,
        read_projection: ClassSessionReadProjection,
        file_client: FileStorageClient,
        settings: Optional[Settings] = None,
    ):
        self._repository = repository
        self._locks = lock_registry
        self._read = read_projection
        self._file_client = file_client
        self._settings = settings or get_settings()

    @property
    def min_duration(self) -> timedelta:
        return timedelta(minutes=self._settings.MIN_SESSION_DURATION_MINUTES)

    @property
    def max_duration(self) -> timedelta:
        return timedelta(hours=self._settings.MAX_SESSION_DURATION_HOURS)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_multiple(
        self,
        request: MultipleClassSessionsCreate,
        files: Optional[List[FileUpload]] = None,
    ) -> List[ClassSession]:
        """Create one session or a recurring batch.

        Args:
            request: Creation payload with weekly time slots
            files: Materials attached to the first created session

        Returns:
            Created sessions in chronological order

        Raises:
            ValidationError: On an invalid address, a bad time slot, or an
                overlapping single session
        """
        if not validate_class_and_session_address(
            request.is_online, request.address, request.ward_id
        ):
            raise ValidationError(ADDRESS_REQUIRED_MESSAGE)

        slots = sanitize_time_slots(
            ((slot.weekday, slot.start_time, slot.end_time) for slot in request.time_slots),
            self.min_duration,
            self.max_duration,
        )

        async with self._locks.hold(class_lock_key(request.class_id)):
            if request.is_single_session:
                intervals = [self._schedule_single(request, slots)]
            else:
                intervals = self._schedule_recurring(request, slots)
                # a lone result keeps the requested date
                if len(intervals) == 1 and request.start_date is not None:
                    intervals = [self._schedule_single(request, slots)]

            if not intervals:
                logger.warning(
                    f"No session could be scheduled for class {request.class_id}",
                    extra={"class_id": request.class_id},
                )
                return []

            materials = []
            if files:
                materials = await self._file_client.upload_multiple_files(files)

            created_at = _utcnow()
            sessions = []
            for index, (start, end) in enumerate(intervals):
                args = ClassSessionCreateArgs(
                    tutor_id=request.tutor_id,
                    class_id=request.class_id,
                    title=request.title if index == 0 else f"{request.title} {index}",
                    description=request.description if index == 0 else "",
                    start_datetime=start,
                    end_datetime=end,
                    created_at=created_at,
                    address=request.address,
                    ward_id=request.ward_id,
                    is_online=request.is_online,
                    location=request.location,
                    materials=materials if index == 0 else [],
                )
                session = self._repository.create_new(args)
                await session.commit_and_publish(
                    self._repository,
                    is_first_session_in_batch=index == 0,
                    num_sessions_in_batch=len(intervals),
                )
                sessions.append(session)

        logger.info(
            f"Created {len(sessions)} session(s) for class {request.class_id}",
            extra={"class_id": request.class_id, "events_committed": len(sessions)},
        )
        return sessions

    def _schedule_single(
        self,
        request: MultipleClassSessionsCreate,
        slots: List[TimeSlot],
    ) -> Tuple[datetime, datetime]:
        """Interval of a one-off session, pinned to the requested start date."""
        if request.start_date is not None:
            day = request.start_date
            matching = [s for s in slots if s.weekday_number == weekday_number_of(day)]
            slot = (matching or slots)[0]
            start = set_time_to_date(day, slot.start_time)
            end = set_time_to_date(day, slot.end_time)
        else:
            occurrence = get_next_occurrence(slots, _utcnow())
            if occurrence is None:
                raise ValidationError("No time slot to schedule")
            start, end = occurrence

        overlapping = self._read.find_overlapping_session(request.class_id, start, end)
        if overlapping is not None:
            raise ValidationError(
                f"Session timeslot overlaps session {overlapping.id}",
                {"overlapping_session_id": overlapping.id},
            )
        return start, end

    def _schedule_recurring(
        self,
        request: MultipleClassSessionsCreate,
        slots: List[TimeSlot],
    ) -> List[Tuple[datetime, datetime]]:
        """Walk the weekly slots forward from the start date.

        Overlapping candidates are skipped without counting towards the
        requested number of sessions.
        """
        now = _utcnow()
        count = request.number_of_sessions_to_create
        end_date = request.end_date_for_recurring_sessions

        if request.start_date is not None:
            cursor = set_time_to_date(request.start_date, time.min)
        else:
            cursor = now
        horizon = max(cursor, now) + timedelta(days=self._settings.MAX_RECURRENCE_SCAN_DAYS)

        accepted: List[Tuple[datetime, datetime]] = []
        while count is None or len(accepted) < count:
            occurrence = get_next_occurrence(slots, cursor)
            if occurrence is None:
                break
            start, end = occurrence

            if end <= now:
                cursor = get_next_day(start)
                continue
            if start > horizon:
                logger.warning(
                    f"Stopped scheduling class {request.class_id} at {horizon.date()}",
                    extra={"class_id": request.class_id},
                )
                break
            if count is None and end_date is not None and end.date() > end_date:
                break

            cursor = end
            if self._overlaps(request.class_id, start, end, accepted):
                logger.debug(f"Skipping overlapping candidate {start.isoformat()}")
                continue
            accepted.append((start, end))
        return accepted

    def _overlaps(
        self,
        class_id: str,
        start: datetime,
        end: datetime,
        batch: List[Tuple[datetime, datetime]],
    ) -> bool:
        if self._read.find_overlapping_session(class_id, start, end) is not None:
            return True
        return any(intervals_overlap(s, e, start, end) for s, e in batch)

    # ------------------------------------------------------------------
    # Update / delete
    # ------------------------------------------------------------------

    async def get_session_by_id(self, class_session_id: str) -> ClassSession:
        """Load a session from its history.

        Raises:
            AggregateNotFoundError: If the session has no events
        """
        return await self._repository.load(class_session_id)

    async def update_class_session(
        self,
        class_session_id: str,
        changes: Dict[str, Any],
        requester: Optional[UserMakeRequest] = None,
        files: Optional[List[FileUpload]] = None,
    ) -> ClassSession:
        """Apply a partial update and put the session back into verification."""
        with bind_aggregate_id(class_session_id):
            async with self._locks.hold(class_session_id):
                session = await self._load_modifiable(class_session_id)
                self._check_permission(session, requester)

                data = dict(changes)
                cleared = [key for key in NON_NULLABLE_FIELDS if key in data and data[key] is None]
                if cleared:
                    raise ValidationError(
                        f"Fields cannot be null: {cleared}", {"fields": cleared}
                    )
                for key in TIME_FIELDS:
                    if data.get(key) is not None:
                        data[key] = _as_utc(data[key])
                self._validate_update(session, data)

                now = _utcnow()
                data["updated_at"] = now
                if "tutor_feedback" in data and data["tutor_feedback"] != session.tutor_feedback:
                    data["feedback_updated_at"] = now

                uploaded = []
                if files:
                    uploaded = await self._file_client.upload_multiple_files(files)
                    data["materials"] = list(session.materials) + list(uploaded)

                try:
                    session.update(data)
                    begin_update_verification(session)
                    await session.commit_and_publish(self._repository)
                except Exception:
                    if uploaded:
                        logger.warning(
                            f"Update of {class_session_id} not committed, removing uploaded files",
                            extra={"class_id": session.class_id},
                        )
                        await self._file_client.delete_multiple_files([m.id for m in uploaded])
                    raise

        logger.info(
            f"Session {class_session_id} updated",
            extra={"class_id": session.class_id, "update_status": session.update_status.value},
        )
        return session

    def _validate_update(self, session: ClassSession, data: Dict[str, Any]) -> None:
        merged = session.preview(data)

        if any(key in data for key in TIME_FIELDS):
            start, end = merged["start_datetime"], merged["end_datetime"]
            validate_time_slot_duration(start, end, self.min_duration, self.max_duration)
            overlapping = self._read.find_overlapping_session(
                session.class_id, start, end, exclude_id=session.id
            )
            if overlapping is not None:
                raise ValidationError(
                    f"Updated session timeslot overlaps session {overlapping.id}",
                    {"overlapping_session_id": overlapping.id},
                )

        if any(key in data for key in ADDRESS_FIELDS):
            if not validate_class_and_session_address(
                merged["is_online"], merged["address"], merged["ward_id"]
            ):
                raise ValidationError(ADDRESS_REQUIRED_MESSAGE)

        if data.get("is_cancelled") and not session.is_cancelled:
            if session.end_datetime is not None and session.end_datetime <= _utcnow():
                raise ValidationError("Cannot cancel a session that has already ended")

    async def delete_class_session(
        self,
        class_session_id: str,
        requester: Optional[UserMakeRequest] = None,
    ) -> ClassSession:
        """Soft delete a session and remove its files."""
        with bind_aggregate_id(class_session_id):
            async with self._locks.hold(class_session_id):
                session = await self._load_modifiable(class_session_id)
                self._check_permission(session, requester)

                session.update({"is_deleted": True, "updated_at": _utcnow()})
                await session.commit_and_publish(self._repository)

            material_ids = [m.id for m in session.materials]
            if material_ids:
                await self._file_client.delete_multiple_files(material_ids)

        logger.info(
            f"Session {class_session_id} deleted",
            extra={"class_id": session.class_id},
        )
        return session

    async def delete_single_material(
        self,
        class_session_id: str,
        material_id: str,
        requester: Optional[UserMakeRequest] = None,
    ) -> ClassSession:
        """Detach one material; the file goes away once the update is verified."""
        with bind_aggregate_id(class_session_id):
            async with self._locks.hold(class_session_id):
                session = await self._load_modifiable(class_session_id)
                self._check_permission(session, requester)

                remaining = [m for m in session.materials if m.id != material_id]
                if len(remaining) == len(session.materials):
                    raise NotFoundError(
                        f"Material {material_id} not found in session {class_session_id}"
                    )

                session.update({"materials": remaining, "updated_at": _utcnow()})
                begin_update_verification(session)
                await session.commit_and_publish(self._repository)
        return session

    async def apply_default_address(
        self,
        class_session_id: str,
        address: Optional[str],
        ward_id: Optional[str],
        is_online: bool,
    ) -> ClassSession:
        """Fill in the class default address returned by the class service.

        The event is tagged as a system fill and is never a revert boundary.
        """
        with bind_aggregate_id(class_session_id):
            async with self._locks.hold(class_session_id):
                session = await self._repository.load(class_session_id)
                if session.is_deleted:
                    raise NotFoundError(f"Class session {class_session_id} not found")
                session.update(
                    {"address": address, "ward_id": ward_id, "is_online": is_online},
                    metadata={"source": DEFAULT_ADDRESS_SOURCE},
                )
                await session.commit_and_publish(self._repository)

        logger.info(
            f"Default address applied to session {class_session_id}",
            extra={"class_id": session.class_id},
        )
        return session

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load_modifiable(self, class_session_id: str) -> ClassSession:
        session = await self._repository.load(class_session_id)
        if session.is_deleted:
            raise NotFoundError(f"Class session {class_session_id} not found")
        if (
            session.create_status != CreateStatus.CREATED
            or session.update_status != UpdateStatus.UPDATED
        ):
            raise ValidationError(
                f"Class session {class_session_id} is awaiting verification",
                {
                    "create_status": session.create_status.value if session.create_status else None,
                    "update_status": session.update_status.value if session.update_status else None,
                },
            )
        return session

    def _check_permission(
        self,
        session: ClassSession,
        requester: Optional[UserMakeRequest],
    ) -> None:
        """Only the class's tutor of record may modify its sessions.

        ``requester`` is None for internal calls.
        """
        if requester is None:
            return
        owner = self._read.find_class_by_id(session.class_id)
        tutor_of_record = owner.tutor_id if owner and owner.tutor_id else session.tutor_id
        if requester.user_role != UserRole.TUTOR or requester.user_id != tutor_of_record:
            raise PermissionDeniedError(
                f"User {requester.user_id} cannot modify session {session.id}",
                {"class_id": session.class_id},
            )
