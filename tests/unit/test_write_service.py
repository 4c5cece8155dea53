"""Tests for ClassSessionWriteService."""

from datetime import date, datetime, timedelta, timezone

import pytest

from session_service.core.errors import (
    AggregateNotFoundError,
    ConcurrencyError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from session_service.class_sessions.clients import FileUpload
from session_service.class_sessions.models import (
    CreateStatus,
    UpdateStatus,
    UserMakeRequest,
    UserRole,
)
from session_service.class_sessions.schemas import TimeSlotIn


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def _slot(start, end, weekday="MONDAY"):
    return TimeSlotIn(weekday=weekday, start_time=start, end_time=end)


TUTOR = UserMakeRequest(user_id="tutor-1", user_role=UserRole.TUTOR)


class TestCreateSingle:
    """One-off sessions."""

    @pytest.mark.asyncio
    async def test_single_session_pinned_to_start_date(self, write_service, create_request):
        sessions = await write_service.create_multiple(create_request())

        assert len(sessions) == 1
        session = sessions[0]
        assert session.start_datetime == _utc(2030, 1, 7, 10)
        assert session.end_datetime == _utc(2030, 1, 7, 11)
        assert session.title == "Algebra"
        assert session.create_status == CreateStatus.CREATE_PENDING

    @pytest.mark.asyncio
    async def test_overlapping_single_session_rejected(self, write_service, create_request, event_store):
        """Mon 10:00-11:00 exists; Mon 10:30-11:30 on the same date is refused."""
        await write_service.create_multiple(create_request())
        before = len(await event_store.get_all_events())

        with pytest.raises(ValidationError):
            await write_service.create_multiple(
                create_request(time_slots=[_slot("10:30", "11:30")])
            )

        assert len(await event_store.get_all_events()) == before

    @pytest.mark.asyncio
    async def test_adjacent_session_allowed(self, write_service, create_request):
        await write_service.create_multiple(create_request())
        sessions = await write_service.create_multiple(
            create_request(time_slots=[_slot("11:00", "12:00")])
        )
        assert len(sessions) == 1

    @pytest.mark.asyncio
    async def test_failed_creation_does_not_block_slot(self, write_service, coordinator, create_request):
        [rejected] = await write_service.create_multiple(create_request())
        await coordinator.handle_class_verified(rejected.id, False)

        sessions = await write_service.create_multiple(create_request())
        assert len(sessions) == 1

    @pytest.mark.asyncio
    async def test_other_class_does_not_overlap(self, write_service, create_request):
        await write_service.create_multiple(create_request())
        sessions = await write_service.create_multiple(create_request(class_id="class-2"))
        assert len(sessions) == 1

    @pytest.mark.asyncio
    async def test_offline_requires_address_and_ward_together(self, write_service, create_request):
        with pytest.raises(ValidationError):
            await write_service.create_multiple(
                create_request(is_online=False, address="1 Main St")
            )

    @pytest.mark.asyncio
    async def test_short_slot_rejected(self, write_service, create_request):
        with pytest.raises(ValidationError):
            await write_service.create_multiple(
                create_request(time_slots=[_slot("10:00", "10:20")])
            )

    @pytest.mark.asyncio
    async def test_files_attached_to_session(self, write_service, create_request, file_client):
        [session] = await write_service.create_multiple(
            create_request(),
            files=[FileUpload(filename="syllabus.pdf", content=b"%PDF", description="Syllabus")],
        )
        assert len(session.materials) == 1
        assert session.materials[0].description == "Syllabus"
        assert session.materials[0].id in file_client.files


class TestCreateRecurring:
    """Recurring batches."""

    @pytest.mark.asyncio
    async def test_three_mondays(self, write_service, create_request, broadcaster):
        sessions = await write_service.create_multiple(
            create_request(number_of_sessions_to_create=3)
        )

        assert [s.start_datetime.date() for s in sessions] == [
            date(2030, 1, 7),
            date(2030, 1, 14),
            date(2030, 1, 21),
        ]
        assert [s.title for s in sessions] == ["Algebra", "Algebra 1", "Algebra 2"]
        assert [s.description for s in sessions] == ["Linear equations", "", ""]

        payloads = [c.args[1] for c in broadcaster.broadcast.call_args_list]
        assert [p["is_first_session_in_batch"] for p in payloads] == [True, False, False]
        assert {p["num_of_sessions_created_in_batch"] for p in payloads} == {3}

    @pytest.mark.asyncio
    async def test_overlap_skipped_without_consuming_count(self, write_service, create_request):
        await write_service.create_multiple(create_request(start_date=date(2030, 1, 14)))

        sessions = await write_service.create_multiple(
            create_request(number_of_sessions_to_create=3)
        )

        assert [s.start_datetime.date() for s in sessions] == [
            date(2030, 1, 7),
            date(2030, 1, 21),
            date(2030, 1, 28),
        ]

    @pytest.mark.asyncio
    async def test_until_end_date(self, write_service, create_request):
        sessions = await write_service.create_multiple(
            create_request(end_date_for_recurring_sessions=date(2030, 1, 20))
        )
        assert [s.start_datetime.date() for s in sessions] == [date(2030, 1, 7), date(2030, 1, 14)]

    @pytest.mark.asyncio
    async def test_single_result_pinned_to_start_date(self, write_service, create_request):
        """Wednesday start, Monday slot, window closing Tuesday: one session, on Wednesday."""
        sessions = await write_service.create_multiple(
            create_request(
                start_date=date(2030, 1, 9),
                end_date_for_recurring_sessions=date(2030, 1, 15),
            )
        )

        assert [(s.start_datetime, s.end_datetime) for s in sessions] == [
            (_utc(2030, 1, 9, 10), _utc(2030, 1, 9, 11))
        ]

    @pytest.mark.asyncio
    async def test_pinned_single_result_checks_overlap(self, write_service, create_request):
        await write_service.create_multiple(create_request(start_date=date(2030, 1, 9)))

        with pytest.raises(ValidationError):
            await write_service.create_multiple(
                create_request(
                    start_date=date(2030, 1, 9),
                    end_date_for_recurring_sessions=date(2030, 1, 15),
                )
            )

    @pytest.mark.asyncio
    async def test_multiple_weekdays_in_order(self, write_service, create_request):
        sessions = await write_service.create_multiple(
            create_request(
                number_of_sessions_to_create=4,
                time_slots=[
                    _slot("18:00", "19:00", "WEDNESDAY"),
                    _slot("10:00", "11:00", "MONDAY"),
                    _slot("14:00", "15:00", "MONDAY"),
                ],
            )
        )
        assert [s.start_datetime for s in sessions] == [
            _utc(2030, 1, 7, 10),
            _utc(2030, 1, 7, 14),
            _utc(2030, 1, 9, 18),
            _utc(2030, 1, 14, 10),
        ]

    @pytest.mark.asyncio
    async def test_past_start_date_only_schedules_future(self, write_service, create_request):
        now = datetime.now(timezone.utc)
        sessions = await write_service.create_multiple(
            create_request(start_date=date(2020, 1, 6), number_of_sessions_to_create=2)
        )
        assert len(sessions) == 2
        assert all(s.end_datetime > now for s in sessions)

    @pytest.mark.asyncio
    async def test_sessions_land_in_projection(self, write_service, create_request, read_projection):
        await write_service.create_multiple(create_request(number_of_sessions_to_create=2))
        assert len(read_projection) == 2


class TestUpdate:
    """Partial updates."""

    @pytest.mark.asyncio
    async def test_update_reenters_verification(self, write_service, verified_session):
        session = await verified_session()

        updated = await write_service.update_class_session(
            session.id, {"title": "Geometry"}, requester=TUTOR
        )

        assert updated.title == "Geometry"
        assert updated.update_status == UpdateStatus.UPDATE_PENDING
        assert updated.tutor_verified is False
        assert updated.class_verified is True
        assert updated.updated_at is not None

    @pytest.mark.asyncio
    async def test_pending_session_cannot_be_updated(self, write_service, create_request):
        [session] = await write_service.create_multiple(create_request())
        with pytest.raises(ValidationError):
            await write_service.update_class_session(session.id, {"title": "Geometry"})

    @pytest.mark.asyncio
    async def test_missing_session(self, write_service):
        with pytest.raises(AggregateNotFoundError):
            await write_service.update_class_session("missing", {"title": "x"})

    @pytest.mark.asyncio
    async def test_time_change_checks_overlap(self, write_service, verified_session):
        await verified_session()
        other = await verified_session(time_slots=[_slot("12:00", "13:00")])

        with pytest.raises(ValidationError):
            await write_service.update_class_session(
                other.id,
                {"start_datetime": _utc(2030, 1, 7, 10, 30), "end_datetime": _utc(2030, 1, 7, 11, 30)},
            )

    @pytest.mark.asyncio
    async def test_time_change_ignores_own_interval(self, write_service, verified_session):
        session = await verified_session()
        updated = await write_service.update_class_session(
            session.id,
            {"start_datetime": _utc(2030, 1, 7, 10, 15), "end_datetime": _utc(2030, 1, 7, 11, 15)},
        )
        assert updated.start_datetime == _utc(2030, 1, 7, 10, 15)

    @pytest.mark.asyncio
    async def test_time_change_checks_duration(self, write_service, verified_session):
        session = await verified_session()
        with pytest.raises(ValidationError):
            await write_service.update_class_session(
                session.id, {"end_datetime": _utc(2030, 1, 7, 10, 20)}
            )

    @pytest.mark.asyncio
    async def test_address_change_checks_invariant(self, write_service, verified_session, repository):
        session = await verified_session()
        version = (await repository.load(session.id)).version

        with pytest.raises(ValidationError):
            await write_service.update_class_session(
                session.id, {"is_online": False, "ward_id": "w-1"}
            )

        assert (await repository.load(session.id)).version == version

    @pytest.mark.asyncio
    async def test_cannot_cancel_ended_session(self, write_service, verified_session):
        session = await verified_session(start_date=date(2020, 1, 6))
        with pytest.raises(ValidationError):
            await write_service.update_class_session(session.id, {"is_cancelled": True})

    @pytest.mark.asyncio
    async def test_feedback_stamps_feedback_time(self, write_service, verified_session):
        session = await verified_session()
        updated = await write_service.update_class_session(
            session.id, {"tutor_feedback": "Great progress"}
        )
        assert updated.feedback_updated_at == updated.updated_at

    @pytest.mark.asyncio
    async def test_naive_datetimes_treated_as_utc(self, write_service, verified_session):
        session = await verified_session()
        updated = await write_service.update_class_session(
            session.id,
            {"start_datetime": datetime(2030, 1, 7, 9), "end_datetime": datetime(2030, 1, 7, 10)},
        )
        assert updated.start_datetime == _utc(2030, 1, 7, 9)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["start_datetime", "end_datetime", "title", "is_online"])
    async def test_null_for_required_field_rejected(self, write_service, verified_session, repository, field):
        session = await verified_session()
        version = (await repository.load(session.id)).version

        with pytest.raises(ValidationError):
            await write_service.update_class_session(session.id, {field: None})

        assert (await repository.load(session.id)).version == version

    @pytest.mark.asyncio
    async def test_null_clears_optional_field(self, write_service, verified_session):
        session = await verified_session(location={"lat": 10.7, "lng": 106.6})
        updated = await write_service.update_class_session(session.id, {"location": None})
        assert updated.location is None

    @pytest.mark.asyncio
    async def test_uploaded_files_removed_when_commit_fails(
        self, write_service, verified_session, repository, file_client, monkeypatch
    ):
        session = await verified_session()

        async def failing_save(aggregate):
            raise ConcurrencyError("Expected version 3, but current is 4")

        monkeypatch.setattr(repository, "save", failing_save)

        with pytest.raises(ConcurrencyError):
            await write_service.update_class_session(
                session.id,
                {"title": "With slides"},
                files=[FileUpload(filename="slides.pdf", content=b"%PDF")],
            )

        assert file_client.files == {}
        assert len(file_client.deleted_ids) == 1


class TestPermissions:
    @pytest.mark.asyncio
    async def test_other_tutor_denied(self, write_service, verified_session):
        session = await verified_session()
        intruder = UserMakeRequest(user_id="tutor-2", user_role=UserRole.TUTOR)

        with pytest.raises(PermissionDeniedError):
            await write_service.update_class_session(session.id, {"title": "x"}, requester=intruder)
        with pytest.raises(PermissionDeniedError):
            await write_service.delete_class_session(session.id, requester=intruder)

    @pytest.mark.asyncio
    async def test_student_denied(self, write_service, verified_session):
        session = await verified_session()
        student = UserMakeRequest(user_id="tutor-1", user_role=UserRole.STUDENT)
        with pytest.raises(PermissionDeniedError):
            await write_service.delete_class_session(session.id, requester=student)

    @pytest.mark.asyncio
    async def test_class_record_tutor_takes_precedence(self, write_service, verified_session, read_projection):
        session = await verified_session()
        read_projection.handle_class_created("class-1", "student-1")
        read_projection.handle_class_application_updated("class-1", "tutor-9", "APPROVED")

        with pytest.raises(PermissionDeniedError):
            await write_service.update_class_session(session.id, {"title": "x"}, requester=TUTOR)

        new_tutor = UserMakeRequest(user_id="tutor-9", user_role=UserRole.TUTOR)
        updated = await write_service.update_class_session(session.id, {"title": "x"}, requester=new_tutor)
        assert updated.title == "x"


class TestDeleteAndMaterials:
    @pytest.mark.asyncio
    async def test_delete_removes_files_and_read_record(
        self, write_service, coordinator, create_request, file_client, read_projection
    ):
        [session] = await write_service.create_multiple(
            create_request(), files=[FileUpload(filename="a.pdf", content=b"a")]
        )
        await coordinator.handle_tutor_verified(session.id, True)
        await coordinator.handle_class_verified(session.id, True)

        deleted = await write_service.delete_class_session(session.id, requester=TUTOR)

        assert deleted.is_deleted is True
        assert file_client.deleted_ids == [session.materials[0].id]
        assert len(read_projection) == 0
        with pytest.raises(NotFoundError):
            await write_service.delete_class_session(session.id)

    @pytest.mark.asyncio
    async def test_delete_single_material(self, write_service, coordinator, create_request):
        [session] = await write_service.create_multiple(
            create_request(),
            files=[FileUpload(filename="a.pdf", content=b"a"), FileUpload(filename="b.pdf", content=b"b")],
        )
        await coordinator.handle_tutor_verified(session.id, True)
        await coordinator.handle_class_verified(session.id, True)
        keep = session.materials[1]

        updated = await write_service.delete_single_material(session.id, session.materials[0].id)

        assert updated.materials == [keep]
        assert updated.update_status == UpdateStatus.UPDATE_PENDING

    @pytest.mark.asyncio
    async def test_delete_unknown_material(self, write_service, verified_session):
        session = await verified_session()
        with pytest.raises(NotFoundError):
            await write_service.delete_single_material(session.id, "nope")


class TestDefaultAddress:
    @pytest.mark.asyncio
    async def test_default_address_applied_without_reverification(self, write_service, verified_session):
        session = await verified_session(is_online=False)

        updated = await write_service.apply_default_address(
            session.id, "1 Main St", "w-1", is_online=False
        )

        assert updated.address == "1 Main St"
        assert updated.ward_id == "w-1"
        assert updated.update_status == UpdateStatus.UPDATED

    @pytest.mark.asyncio
    async def test_lock_is_released_after_commands(self, write_service, verified_session, lock_registry):
        session = await verified_session()
        await write_service.update_class_session(session.id, {"title": "x"})
        assert lock_registry.active_keys == []
        assert datetime.now(timezone.utc) - timedelta(seconds=5) < (
            await write_service.get_session_by_id(session.id)
        ).updated_at
