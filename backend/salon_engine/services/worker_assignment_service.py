# backend/salon_engine/services/worker_assignment_service.py
"""
Worker Assignment Service for the salon booking engine.

Assigns workers to a booking so that no worker ever holds two active
assignments with overlapping intervals, even under concurrent requests
from several processes.

Each attempt runs in one transaction that:
- on PostgreSQL is SERIALIZABLE and bounded by ``statement_timeout``
- locks the booking row, then the worker rows in id order
- runs the conflict check on the same snapshot as the insert
- relies on the storage exclusion constraint as the second defense

Only transient storage failures are retried, through an injected
RetryPolicy. Conflicts, availability and validation errors surface on the
first attempt.
"""

from dataclasses import dataclass, field
from datetime import datetime
import logging
import time
from typing import List, Optional, Sequence

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.actor import Actor
from ..core.config import settings
from ..core.enums import AssignmentRole
from ..core.exceptions import (
    BookingStateException,
    DomainException,
    NotFoundException,
    RetryExhaustedException,
    TransientStorageException,
    ValidationException,
    WorkerAvailabilityException,
    WorkerConflictException,
)
from ..core.retry import RetryPolicy
from ..core.timezone_utils import utc_now
from ..database.session_utils import is_postgres
from ..events.booking_events import WorkerRemoved, WorkersAssigned
from ..events.publisher import EventPublisher
from ..models.booking import Booking
from ..models.worker import Worker
from ..models.worker_assignment import WorkerAssignment
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories import RepositoryFactory
from .base import BaseService
from .conflict_checker import ConflictChecker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssignmentResult:
    """Outcome of a committed assignment."""

    booking_id: str
    booking_reference: str
    worker_ids: List[str]
    assignment_ids: List[str]
    status: str
    payment_status: str
    worker_assigned: bool
    replaced: bool = False
    attempts: int = 1
    assigned_at: Optional[datetime] = None
    released_worker_ids: List[str] = field(default_factory=list)


class WorkerAssignmentService(BaseService):
    """Transactional worker-to-booking assignment."""

    def __init__(
        self,
        db: Session,
        conflict_checker: Optional[ConflictChecker] = None,
        retry_policy: Optional[RetryPolicy] = None,
        publisher: Optional[EventPublisher] = None,
    ):
        super().__init__(db)
        self.conflict_checker = conflict_checker or ConflictChecker(db)
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.worker_repository = RepositoryFactory.create_worker_repository(db)
        self.assignment_repository = RepositoryFactory.create_worker_assignment_repository(db)
        self.publisher = publisher or EventPublisher(
            RepositoryFactory.create_event_outbox_repository(db)
        )

    @BaseService.measure_operation("assign_workers")
    def assign_workers(
        self,
        booking_id: str,
        worker_ids: Sequence[str],
        actor: Actor,
        *,
        replace: bool = False,
        timeout_seconds: Optional[float] = None,
    ) -> AssignmentResult:
        """
        Assign workers to a booking.

        Args:
            booking_id: Booking to staff
            worker_ids: Non-empty list of distinct worker ids
            actor: Acting user, recorded on every assignment row
            replace: Release the booking's current assignments first
            timeout_seconds: Per-attempt deadline; defaults to settings

        Returns:
            AssignmentResult for the committed attempt

        Raises:
            ValidationException: Empty/duplicate ids, or worker already assigned
            NotFoundException: Booking or worker missing
            BookingStateException: Booking is cancelled or completed
            WorkerAvailabilityException: A worker is inactive or unavailable
            WorkerConflictException: A worker is busy during the interval
            RetryExhaustedException: Transient failures persisted
        """
        ids = self._validate_worker_ids(worker_ids)
        timeout = settings.transaction_timeout_seconds if timeout_seconds is None else timeout_seconds
        if timeout <= 0:
            raise ValidationException("timeout_seconds must be positive", code="INVALID_TIMEOUT")

        attempts = 0

        def attempt() -> AssignmentResult:
            nonlocal attempts
            attempts += 1
            return self._assign_once(booking_id, ids, actor, replace, timeout, attempts)

        try:
            result = self.retry_policy.run("assign_workers", attempt, on_retry=self._on_retry)
        except WorkerConflictException:
            prometheus_metrics.record_assignment("conflict")
            raise
        except WorkerAvailabilityException:
            prometheus_metrics.record_assignment("unavailable")
            raise
        except RetryExhaustedException:
            prometheus_metrics.record_assignment("exhausted")
            raise
        except DomainException:
            prometheus_metrics.record_assignment("invalid")
            raise

        prometheus_metrics.record_assignment("assigned")
        self.logger.info(
            f"Assigned workers {result.worker_ids} to booking {result.booking_reference}",
            extra={
                "event": "workers_assigned",
                "booking_id": result.booking_id,
                "actor_id": actor.id,
                "attempts": result.attempts,
            },
        )
        return result

    @BaseService.measure_operation("remove_worker")
    def remove_worker(self, booking_id: str, worker_id: str, actor: Actor) -> Booking:
        """Release one worker from a booking. The booking's status is unchanged."""
        with self.transaction():
            booking = self._load_open_booking(booking_id, "remove workers from")
            assignment = self.assignment_repository.get_for_booking_worker(booking.id, worker_id)
            if assignment is None or not assignment.is_active:
                raise NotFoundException(
                    f"Worker {worker_id} is not assigned to booking {booking.booking_number}",
                    code="WORKER_NOT_ASSIGNED",
                    details={"booking_id": booking.id, "worker_id": worker_id},
                )
            now = utc_now()
            self.assignment_repository.release(assignment, now)
            self.publisher.publish(
                WorkerRemoved(
                    booking_id=booking.id,
                    booking_number=booking.booking_number,
                    status=booking.status,
                    payment_status=booking.payment_status,
                    actor_id=actor.id,
                    occurred_at=now,
                    worker_id=worker_id,
                ),
                dedup_key=f"{assignment.id}:{now.isoformat()}",
            )

        self.db.refresh(booking)
        self.logger.info(
            f"Removed worker {worker_id} from booking {booking.booking_number}",
            extra={"event": "worker_removed", "booking_id": booking.id, "actor_id": actor.id},
        )
        return booking

    # ------------------------------------------------------------------ internals

    @staticmethod
    def _validate_worker_ids(worker_ids: Sequence[str]) -> List[str]:
        ids = [w for w in (worker_ids or []) if w]
        if not ids:
            raise ValidationException("At least one worker is required", code="NO_WORKERS")
        duplicates = sorted({w for w in ids if ids.count(w) > 1})
        if duplicates:
            raise ValidationException(
                "Worker list contains duplicates",
                code="DUPLICATE_WORKERS",
                details={"worker_ids": duplicates},
            )
        return ids

    def _on_retry(self, attempt: int, exc: BaseException) -> None:
        reason = getattr(exc, "reason", None) or type(exc).__name__
        prometheus_metrics.record_assignment_retry(reason)

    def _begin_attempt(self, timeout_seconds: float) -> None:
        """Pin isolation and the statement deadline for this attempt (PostgreSQL only)."""
        if not is_postgres(self.db):
            return
        if not self.db.in_transaction():
            self.db.connection(execution_options={"isolation_level": "SERIALIZABLE"})
        timeout_ms = max(int(timeout_seconds * 1000), 1)
        self.db.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))

    @staticmethod
    def _check_deadline(deadline: float, booking_id: str) -> None:
        if time.monotonic() > deadline:
            raise TransientStorageException(
                f"Assignment for booking {booking_id} exceeded its deadline",
                reason="timeout",
            )

    def _load_open_booking(self, booking_id: str, action: str) -> Booking:
        booking = self.booking_repository.get_for_update(booking_id)
        if booking is None:
            raise NotFoundException(
                f"Booking {booking_id} not found",
                code="BOOKING_NOT_FOUND",
                details={"booking_id": booking_id},
            )
        if booking.is_closed:
            raise BookingStateException(booking.id, booking.status, action)
        return booking

    def _check_workers(self, ids: List[str], workers: List[Worker]) -> None:
        found = {w.id: w for w in workers}
        missing = [w for w in ids if w not in found]
        if missing:
            raise NotFoundException(
                f"Workers not found: {', '.join(missing)}",
                code="WORKER_NOT_FOUND",
                details={"worker_ids": missing},
            )
        unavailable = [
            {
                "worker_id": w.id,
                "worker_name": w.name,
                "is_active": bool(w.is_active),
                "current_status": w.current_status,
            }
            for w in (found[i] for i in ids)
            if not w.is_assignable
        ]
        if unavailable:
            raise WorkerAvailabilityException(unavailable)

    def _assign_once(
        self,
        booking_id: str,
        ids: List[str],
        actor: Actor,
        replace: bool,
        timeout_seconds: float,
        attempt: int,
    ) -> AssignmentResult:
        deadline = time.monotonic() + timeout_seconds

        with self.transaction():
            self._begin_attempt(timeout_seconds)
            booking = self._load_open_booking(booking_id, "assign workers to")
            self._check_workers(ids, self.worker_repository.get_many(ids, lock=True))

            existing = self.assignment_repository.get_for_booking(booking.id)
            if not replace:
                already = [w for w in ids if w in {a.worker_id for a in existing}]
                if already:
                    raise ValidationException(
                        f"Workers already assigned to booking {booking.booking_number}",
                        code="WORKER_ALREADY_ASSIGNED",
                        details={"booking_id": booking.id, "worker_ids": already},
                    )

            now = utc_now()
            released = []
            if replace and existing:
                released = [a.worker_id for a in existing]
                self.assignment_repository.release_for_booking(booking.id, now)

            start, end = booking.starts_at, booking.ends_at
            conflicts = self.conflict_checker.find_conflicts(ids, start, end, booking.id)
            if conflicts:
                raise WorkerConflictException([c.to_dict() for c in conflicts])

            # status and payment_status are left exactly as they were
            assignments = self._insert_assignments(booking, ids, actor, now)

            assignment_ids = [a.id for a in assignments]
            self.publisher.publish(
                WorkersAssigned(
                    booking_id=booking.id,
                    booking_number=booking.booking_number,
                    status=booking.status,
                    payment_status=booking.payment_status,
                    actor_id=actor.id,
                    occurred_at=now,
                    worker_ids=list(ids),
                    replaced=replace,
                ),
                dedup_key=f"{booking.id}:{','.join(sorted(assignment_ids))}:{now.isoformat()}",
            )

            self._check_deadline(deadline, booking.id)

            result = AssignmentResult(
                booking_id=booking.id,
                booking_reference=booking.booking_number,
                worker_ids=list(ids),
                assignment_ids=assignment_ids,
                status=booking.status,
                payment_status=booking.payment_status,
                worker_assigned=True,
                replaced=replace,
                attempts=attempt,
                assigned_at=now,
                released_worker_ids=[w for w in released if w not in ids],
            )
        return result

    def _insert_assignments(
        self, booking: Booking, ids: List[str], actor: Actor, now: datetime
    ) -> List[WorkerAssignment]:
        start, end = booking.starts_at, booking.ends_at
        try:
            return [
                self.assignment_repository.insert_assignment(
                    booking_id=booking.id,
                    worker_id=worker_id,
                    starts_at=start,
                    ends_at=end,
                    assigned_by_id=actor.id,
                    assigned_at=now,
                    role=(AssignmentRole.PRIMARY if index == 0 else AssignmentRole.ASSISTANT).value,
                )
                for index, worker_id in enumerate(ids)
            ]
        except IntegrityError as exc:
            # The storage constraint caught a concurrent commit the snapshot missed
            self.db.rollback()
            conflicts = self.conflict_checker.find_conflicts(ids, start, end, booking.id)
            if conflicts:
                raise WorkerConflictException([c.to_dict() for c in conflicts]) from exc
            raise TransientStorageException(
                f"Assignment for booking {booking.id} lost a race on the storage constraint",
                reason="constraint_race",
            ) from exc
