# backend/salon_engine/repositories/conflict_checker_repository.py
"""
ConflictChecker Repository for the salon booking engine.

Every overlap query in the system goes through this repository so there is
exactly one definition of "conflict": an active assignment of the same
worker, on a booking that is not cancelled, whose half-open interval
intersects the requested one (``existing.start < end AND start < existing.end``).
"""

from datetime import datetime
import logging
from typing import List, Optional, Sequence, Tuple, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, contains_eager

from ..core.enums import BookingStatus
from ..core.exceptions import RepositoryException
from ..core.timezone_utils import ensure_utc
from ..models.booking import Booking
from ..models.worker_assignment import WorkerAssignment
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ConflictCheckerRepository(BaseRepository[WorkerAssignment]):
    """
    Repository for conflict checking data access.

    Reads run on the caller's session, so when invoked from inside the
    assignment transaction they observe the same snapshot as the insert.
    """

    def __init__(self, db: Session):
        """Initialize with WorkerAssignment model as primary."""
        super().__init__(db, WorkerAssignment)
        self.logger = logging.getLogger(__name__)

    def get_overlapping_assignments(
        self,
        worker_ids: Sequence[str],
        start: datetime,
        end: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Tuple[WorkerAssignment, Booking]]:
        """
        Get active assignments that overlap ``[start, end)`` for the given workers.

        Args:
            worker_ids: Workers to check (already de-duplicated)
            start: Inclusive interval start
            end: Exclusive interval end
            exclude_booking_id: Optional booking to leave out (booking edits)

        Returns:
            (assignment, booking) pairs ordered by worker then start time
        """
        if not worker_ids:
            return []
        try:
            query = (
                self.db.query(WorkerAssignment, Booking)
                .join(Booking, WorkerAssignment.booking_id == Booking.id)
                .filter(
                    WorkerAssignment.worker_id.in_(list(worker_ids)),
                    WorkerAssignment.is_active.is_(True),
                    Booking.status != BookingStatus.CANCELLED.value,
                    WorkerAssignment.starts_at < ensure_utc(end),
                    WorkerAssignment.ends_at > ensure_utc(start),
                )
            )
            if exclude_booking_id:
                query = query.filter(WorkerAssignment.booking_id != exclude_booking_id)

            rows = query.order_by(
                WorkerAssignment.worker_id, WorkerAssignment.starts_at, Booking.id
            ).all()
            return [(assignment, booking) for assignment, booking in rows]
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting assignments for conflict check: {str(e)}")
            raise RepositoryException(f"Failed to get conflicting assignments: {str(e)}") from e

    def list_assignments(
        self, worker_ids: Sequence[str], start: datetime, end: datetime
    ) -> List[WorkerAssignment]:
        """
        Active, non-cancelled assignments for the workers intersecting a date range.

        Used for schedule previews; ordered by start time.
        """
        try:
            return cast(
                List[WorkerAssignment],
                self.db.query(WorkerAssignment)
                .join(WorkerAssignment.booking)
                .options(contains_eager(WorkerAssignment.booking))
                .filter(
                    WorkerAssignment.worker_id.in_(list(worker_ids)),
                    WorkerAssignment.is_active.is_(True),
                    Booking.status != BookingStatus.CANCELLED.value,
                    WorkerAssignment.starts_at < ensure_utc(end),
                    WorkerAssignment.ends_at > ensure_utc(start),
                )
                .order_by(WorkerAssignment.starts_at, WorkerAssignment.id)
                .all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing assignments: {str(e)}")
            raise RepositoryException(f"Failed to list assignments: {str(e)}") from e
