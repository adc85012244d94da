# backend/salon_engine/services/booking_service.py
"""
Booking lifecycle service.

Handles the service-lifecycle axis of a booking (status transitions, soft
cancellation and rescheduling with its assigned workers). The payment axis
is owned by PaymentReconciliationService and is never touched here.
"""

from datetime import datetime, timedelta
import logging
from typing import Dict, FrozenSet, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.actor import Actor
from ..core.enums import BookingStatus
from ..core.exceptions import (
    BookingStateException,
    NotFoundException,
    TransientStorageException,
    ValidationException,
    WorkerConflictException,
)
from ..core.retry import RetryPolicy
from ..core.timezone_utils import utc_now
from ..events.booking_events import BookingCancelled, BookingRescheduled, BookingStatusChanged
from ..events.publisher import EventPublisher
from ..models.booking import Booking
from ..repositories import RepositoryFactory
from .base import BaseService
from .conflict_checker import ConflictChecker

logger = logging.getLogger(__name__)

ALLOWED_STATUS_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING_CONFIRMATION: frozenset({BookingStatus.SCHEDULED, BookingStatus.CANCELLED}),
    BookingStatus.SCHEDULED: frozenset(
        {BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED, BookingStatus.COMPLETED}
    ),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}


class BookingService(BaseService):
    """Service for booking lifecycle operations."""

    def __init__(
        self,
        db: Session,
        publisher: Optional[EventPublisher] = None,
        conflict_checker: Optional[ConflictChecker] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        super().__init__(db)
        self.conflict_checker = conflict_checker or ConflictChecker(db)
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.repository = RepositoryFactory.create_booking_repository(db)
        self.worker_repository = RepositoryFactory.create_worker_repository(db)
        self.assignment_repository = RepositoryFactory.create_worker_assignment_repository(db)
        self.publisher = publisher or EventPublisher(
            RepositoryFactory.create_event_outbox_repository(db)
        )

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundException(
                f"Booking {booking_id} not found",
                code="BOOKING_NOT_FOUND",
                details={"booking_id": booking_id},
            )
        return booking

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(self, booking_id: str, actor: Actor, reason: Optional[str] = None) -> Booking:
        """
        Soft-cancel a booking and release its workers.

        Bookings are never deleted; a cancelled booking keeps its payment
        history so a completed payment can still be refunded or reviewed.
        """
        with self.transaction():
            booking = self._lock(booking_id)
            if booking.is_closed:
                raise BookingStateException(booking.id, booking.status, "cancel")

            now = utc_now()
            booking.mark_cancelled(actor.id, reason, now)
            released = self.assignment_repository.release_for_booking(booking.id, now)
            self.repository.flush()

            self.publisher.publish(
                BookingCancelled(
                    booking_id=booking.id,
                    booking_number=booking.booking_number,
                    status=booking.status,
                    payment_status=booking.payment_status,
                    actor_id=actor.id,
                    occurred_at=now,
                    reason=reason,
                ),
                dedup_key=booking.id,
            )

        self.db.refresh(booking)
        self.logger.info(
            f"Cancelled booking {booking.booking_number}, released {released} assignment(s)",
            extra={"event": "booking_cancelled", "booking_id": booking.id, "actor_id": actor.id},
        )
        return booking

    @BaseService.measure_operation("update_status")
    def update_status(self, booking_id: str, new_status: BookingStatus | str, actor: Actor) -> Booking:
        """
        Move a booking along its service lifecycle.

        Raises:
            ValidationException: Unknown status value
            BookingStateException: Transition not allowed from the current status
        """
        try:
            target = BookingStatus(new_status)
        except ValueError as exc:
            raise ValidationException(
                f"Unknown booking status: {new_status}", code="INVALID_STATUS"
            ) from exc

        if target == BookingStatus.CANCELLED:
            return self.cancel_booking(booking_id, actor)

        with self.transaction():
            booking = self._lock(booking_id)
            current = BookingStatus(booking.status)
            if target == current:
                return booking
            if target not in ALLOWED_STATUS_TRANSITIONS[current]:
                raise BookingStateException(booking.id, booking.status, f"move to {target.value}")

            now = utc_now()
            booking.status = target.value
            if target == BookingStatus.IN_PROGRESS and booking.started_at is None:
                booking.started_at = now
            if target == BookingStatus.COMPLETED:
                booking.completed_at = now
            self.repository.flush()

            self.publisher.publish(
                BookingStatusChanged(
                    booking_id=booking.id,
                    booking_number=booking.booking_number,
                    status=booking.status,
                    payment_status=booking.payment_status,
                    actor_id=actor.id,
                    occurred_at=now,
                    previous_status=current.value,
                ),
                dedup_key=f"{booking.id}:{target.value}",
            )

        self.db.refresh(booking)
        self.logger.info(
            f"Booking {booking.booking_number} moved {current.value} -> {target.value}",
            extra={"event": "booking_status_changed", "booking_id": booking.id, "actor_id": actor.id},
        )
        return booking

    @BaseService.measure_operation("reschedule")
    def reschedule(
        self,
        booking_id: str,
        new_start: datetime,
        duration_minutes: Optional[int],
        actor: Actor,
    ) -> Booking:
        """
        Move a booking to a new interval, carrying its active assignments along.

        The active workers are re-checked against the new interval in the same
        transaction that rewrites the booking and its assignment rows, so an
        edit can never create an overlap that ``assign_workers`` would refuse.

        Args:
            booking_id: Booking to move
            new_start: New start (naive values are treated as UTC)
            duration_minutes: New length; ``None`` keeps the current one
            actor: Acting user

        Raises:
            ValidationException: Non-positive duration
            BookingStateException: Booking is cancelled or completed
            WorkerConflictException: An assigned worker is busy in the new interval
            RetryExhaustedException: Transient failures persisted
        """
        if duration_minutes is not None and duration_minutes <= 0:
            raise ValidationException(
                "duration_minutes must be positive",
                code="INVALID_DURATION",
                details={"duration_minutes": duration_minutes},
            )

        booking = self.retry_policy.run(
            "reschedule",
            lambda: self._reschedule_once(booking_id, new_start, duration_minutes, actor),
        )

        self.db.refresh(booking)
        self.logger.info(
            f"Rescheduled booking {booking.booking_number} to {booking.starts_at.isoformat()}",
            extra={"event": "booking_rescheduled", "booking_id": booking.id, "actor_id": actor.id},
        )
        return booking

    def _reschedule_once(
        self,
        booking_id: str,
        new_start: datetime,
        duration_minutes: Optional[int],
        actor: Actor,
    ) -> Booking:
        with self.transaction():
            booking = self._lock(booking_id)
            if booking.is_closed:
                raise BookingStateException(booking.id, booking.status, "reschedule")

            duration = int(duration_minutes or booking.duration_minutes)
            start, end = ConflictChecker.validate_interval(
                new_start, new_start + timedelta(minutes=duration)
            )
            previous_start, previous_duration = booking.starts_at, int(booking.duration_minutes)

            worker_ids = booking.active_worker_ids
            self.worker_repository.get_many(worker_ids, lock=True)

            booking.scheduled_at = start
            booking.duration_minutes = duration
            if worker_ids:
                conflicts = self.conflict_checker.find_conflicts_for_booking(booking, worker_ids)
                if conflicts:
                    raise WorkerConflictException([c.to_dict() for c in conflicts])

            for assignment in self.assignment_repository.get_for_booking(booking.id):
                assignment.starts_at = start
                assignment.ends_at = end
            try:
                self.repository.flush()
            except IntegrityError as exc:
                # exclusion constraint caught a concurrent insert the check missed
                raise TransientStorageException(
                    f"Reschedule of booking {booking.booking_number} lost a race",
                    reason="constraint_race",
                ) from exc

            self.publisher.publish(
                BookingRescheduled(
                    booking_id=booking.id,
                    booking_number=booking.booking_number,
                    status=booking.status,
                    payment_status=booking.payment_status,
                    actor_id=actor.id,
                    occurred_at=utc_now(),
                    previous_start=previous_start,
                    previous_duration_minutes=previous_duration,
                    duration_minutes=duration,
                    worker_ids=list(worker_ids),
                ),
                dedup_key=f"{booking.id}:{start.isoformat()}:{duration}",
            )
        return booking

    def _lock(self, booking_id: str) -> Booking:
        booking = self.repository.get_for_update(booking_id)
        if booking is None:
            raise NotFoundException(
                f"Booking {booking_id} not found",
                code="BOOKING_NOT_FOUND",
                details={"booking_id": booking_id},
            )
        return booking
