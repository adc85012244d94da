"""Worker assignment writes: insert, reactivate and release."""

from datetime import datetime
import logging
from typing import List, Optional, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.worker_assignment import WorkerAssignment
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class WorkerAssignmentRepository(BaseRepository[WorkerAssignment]):
    def __init__(self, db: Session):
        super().__init__(db, WorkerAssignment)
        self.logger = logging.getLogger(__name__)

    def get_for_booking(self, booking_id: str, active_only: bool = True) -> List[WorkerAssignment]:
        try:
            query = self.db.query(WorkerAssignment).filter(WorkerAssignment.booking_id == booking_id)
            if active_only:
                query = query.filter(WorkerAssignment.is_active.is_(True))
            return cast(List[WorkerAssignment], query.order_by(WorkerAssignment.worker_id).all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading assignments for booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to load assignments: {str(e)}") from e

    def get_for_booking_worker(self, booking_id: str, worker_id: str) -> Optional[WorkerAssignment]:
        """Assignment row for the pair, active or not."""
        return self.find_one_by(booking_id=booking_id, worker_id=worker_id)

    def insert_assignment(
        self,
        booking_id: str,
        worker_id: str,
        starts_at: datetime,
        ends_at: datetime,
        assigned_by_id: Optional[str],
        assigned_at: datetime,
        role: str,
    ) -> WorkerAssignment:
        """
        Insert an active assignment, or reactivate a released one for the same pair.

        Does not commit. Storage constraint violations surface as IntegrityError.
        """
        existing = self.get_for_booking_worker(booking_id, worker_id)
        if existing is not None:
            existing.starts_at = starts_at
            existing.ends_at = ends_at
            existing.is_active = True
            existing.assigned_at = assigned_at
            existing.assigned_by_id = assigned_by_id
            existing.released_at = None
            existing.role = role
            self.db.flush()
            return existing
        return self.create(
            booking_id=booking_id,
            worker_id=worker_id,
            starts_at=starts_at,
            ends_at=ends_at,
            assigned_by_id=assigned_by_id,
            assigned_at=assigned_at,
            role=role,
            is_active=True,
        )

    def release(self, assignment: WorkerAssignment, at: datetime) -> WorkerAssignment:
        assignment.is_active = False
        assignment.released_at = at
        self.db.flush()
        return assignment

    def release_for_booking(self, booking_id: str, at: datetime) -> int:
        """Deactivate every active assignment on a booking; returns how many."""
        released = 0
        for assignment in self.get_for_booking(booking_id):
            assignment.is_active = False
            assignment.released_at = at
            released += 1
        if released:
            self.db.flush()
        return released
