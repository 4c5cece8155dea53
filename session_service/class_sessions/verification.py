"""Two-phase verification state machine.

A session has two independent status axes (create and update) and two
verification flags set by asynchronous tutor and class checks. The pure
functions here decide the next statuses; ``VerificationCoordinator`` applies
them to the aggregate under the per-session lock and runs the follow-up work
(revert on a failed update, orphaned file cleanup, default address query).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Tuple

from session_service.core.distributed_lock import LockRegistry
from session_service.core.eventsourcing import Event
from session_service.core.logging import bind_aggregate_id
from session_service.class_sessions.aggregate import ClassSession, ClassSessionRepository
from session_service.class_sessions.clients import FileStorageClient
from session_service.class_sessions.dispatcher import ClassSessionEventDispatcher
from session_service.class_sessions.events import (
    ADDRESS_FIELDS,
    is_content_update,
    is_default_address_fill,
    pick_fields,
)
from session_service.class_sessions.models import (
    CreateStatus,
    Material,
    UpdateStatus,
    Verifier,
    is_address_missing,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerificationState:
    create_status: CreateStatus
    update_status: UpdateStatus
    tutor_verified: bool
    class_verified: bool

    @classmethod
    def of(cls, session: ClassSession) -> "VerificationState":
        return cls(
            create_status=session.create_status,
            update_status=session.update_status,
            tutor_verified=session.tutor_verified,
            class_verified=session.class_verified,
        )

    def to_event_data(self) -> Dict[str, Any]:
        return {
            "create_status": self.create_status,
            "update_status": self.update_status,
            "tutor_verified": self.tutor_verified,
            "class_verified": self.class_verified,
        }


def next_statuses(
    create_status: CreateStatus,
    update_status: UpdateStatus,
    tutor_verified: bool,
    class_verified: bool,
) -> Tuple[CreateStatus, UpdateStatus]:
    """Advance the pending axis once both checks have passed.

    Creation completes before an update can.
    """
    if tutor_verified and class_verified:
        if create_status == CreateStatus.CREATE_PENDING:
            return CreateStatus.CREATED, update_status
        if update_status == UpdateStatus.UPDATE_PENDING:
            return create_status, UpdateStatus.UPDATED
    return create_status, update_status


def apply_verification_result(
    state: VerificationState,
    verifier: Verifier,
    is_valid: bool,
) -> VerificationState:
    """Fold one verification result into the state."""
    flag = "tutor_verified" if verifier == Verifier.TUTOR else "class_verified"
    state = replace(state, **{flag: is_valid})

    if not is_valid:
        if state.create_status == CreateStatus.CREATE_PENDING:
            return replace(state, create_status=CreateStatus.FAILED)
        if state.update_status == UpdateStatus.UPDATE_PENDING:
            return replace(state, update_status=UpdateStatus.FAILED)
        return state

    create_status, update_status = next_statuses(
        state.create_status,
        state.update_status,
        state.tutor_verified,
        state.class_verified,
    )
    return replace(state, create_status=create_status, update_status=update_status)


def begin_update_verification(session: ClassSession) -> None:
    """Put a just-updated session back into UPDATE_PENDING.

    Only the tutor check is reset; class verification stays as it was.
    """
    session.update_verification(
        {
            "update_status": UpdateStatus.UPDATE_PENDING,
            "tutor_verified": False,
        }
    )


def create_completed(previous: VerificationState, current: VerificationState) -> bool:
    return (
        previous.create_status == CreateStatus.CREATE_PENDING
        and current.create_status == CreateStatus.CREATED
    )


def update_completed(previous: VerificationState, current: VerificationState) -> bool:
    # UPDATED is also the status right after creation; only a real
    # UPDATE_PENDING -> UPDATED transition on a created session counts.
    return (
        previous.update_status == UpdateStatus.UPDATE_PENDING
        and current.update_status == UpdateStatus.UPDATED
        and current.create_status == CreateStatus.CREATED
    )


def update_failed(previous: VerificationState, current: VerificationState) -> bool:
    return (
        previous.update_status == UpdateStatus.UPDATE_PENDING
        and current.update_status == UpdateStatus.FAILED
    )


def orphaned_material_ids(before: List[Material], after: List[Material]) -> List[str]:
    """Ids present in ``before`` but no longer referenced in ``after``."""
    remaining = {m.id for m in after}
    return [m.id for m in before if m.id not in remaining]


def address_fills_since_last_update(history: List[Event]) -> Dict[str, Any]:
    """Default address fields filled in after the last tutor update."""
    fills: Dict[str, Any] = {}
    for event in history:
        if is_content_update(event):
            fills = {}
        elif is_default_address_fill(event):
            fills.update(pick_fields(event.data, ADDRESS_FIELDS))
    return fills


class VerificationCoordinator:
    """Consumes tutor/class verification results for sessions."""

    def __init__(
        self,
        repository: ClassSessionRepository,
        lock_registry: LockRegistry,
        file_client: FileStorageClient,
        dispatcher: ClassSessionEventDispatcher,
    ):
        self._repository = repository
        self._locks = lock_registry
        self._file_client = file_client
        self._dispatcher = dispatcher

    async def handle_tutor_verified(self, class_session_id: str, is_valid: bool) -> ClassSession:
        return await self.update_verification(class_session_id, Verifier.TUTOR, is_valid)

    async def handle_class_verified(self, class_session_id: str, is_valid: bool) -> ClassSession:
        return await self.update_verification(class_session_id, Verifier.CLASS, is_valid)

    async def update_verification(
        self,
        class_session_id: str,
        verifier: Verifier,
        is_valid: bool,
    ) -> ClassSession:
        """Apply one verification result and run the resulting transitions.

        The whole load-decide-commit cycle runs under the session lock so two
        results arriving together both see each other's writes.
        """
        with bind_aggregate_id(class_session_id):
            try:
                async with self._locks.hold(class_session_id):
                    return await self._update_verification_locked(
                        class_session_id, verifier, is_valid
                    )
            except Exception:
                logger.exception(
                    f"Verification handling failed for {class_session_id}",
                    extra={"verifier": verifier.value, "is_valid": is_valid},
                )
                raise

    async def _update_verification_locked(
        self,
        class_session_id: str,
        verifier: Verifier,
        is_valid: bool,
    ) -> ClassSession:
        session, history = await self._repository.load_with_history(class_session_id)
        previous = VerificationState.of(session)
        current = apply_verification_result(previous, verifier, is_valid)
        session.update_verification(current.to_event_data())
        logger.info(
            f"Verification result applied to {class_session_id}",
            extra={
                "verifier": verifier.value,
                "is_valid": is_valid,
                "create_status": current.create_status.value,
                "update_status": current.update_status.value,
            },
        )

        orphaned: List[str] = []
        if update_failed(previous, current):
            orphaned = self._revert_to_last_update(session, history)
        elif update_completed(previous, current):
            before = ClassSession.fold_before_last(class_session_id, history, is_content_update)
            orphaned = orphaned_material_ids(before.materials, session.materials)

        await session.commit_and_publish(self._repository)

        if orphaned:
            await self._file_client.delete_multiple_files(orphaned)

        completed = create_completed(previous, current) or update_completed(previous, current)
        if completed and is_address_missing(session.is_online, session.address, session.ward_id):
            self._dispatcher.dispatch_default_address_query(session)

        return session

    def _revert_to_last_update(
        self,
        session: ClassSession,
        history: List[Event],
    ) -> List[str]:
        """Undo the last content update by appending its inverse.

        A default address filled in while the update was pending is kept.
        Returns ids of files only the failed update referenced.

        Raises:
            RevertBoundaryNotFound: If the history holds no content update.
        """
        before = ClassSession.fold_before_last(session.id, history, is_content_update)
        orphaned = orphaned_material_ids(session.materials, before.materials)

        content = before.content_fields()
        content.update(address_fills_since_last_update(history))
        session.update(content)
        restored = VerificationState.of(before)
        session.update_verification(restored.to_event_data())
        logger.warning(
            f"Update of {session.id} failed verification, reverted to previous state",
            extra={"update_status": restored.update_status.value},
        )
        return orphaned

    async def revert_to_last_update(self, class_session_id: str) -> ClassSession:
        """Revert a session whose update failed verification."""
        async with self._locks.hold(class_session_id):
            session, history = await self._repository.load_with_history(class_session_id)
            orphaned = self._revert_to_last_update(session, history)
            await session.commit_and_publish(self._repository)
        if orphaned:
            await self._file_client.delete_multiple_files(orphaned)
        return session
