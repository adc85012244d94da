# backend/salon_engine/services/conflict_checker.py
"""
Conflict Checker Service for the salon booking engine.

The single definition of a scheduling conflict. Staff-facing previews, the
assignment transaction and booking edits all call ``find_conflicts`` so no
caller can drift to a different notion of overlap.

Intervals are half-open: ``[10:00, 10:30)`` and ``[10:30, 11:00)`` do not
conflict.
"""

from dataclasses import dataclass
from datetime import date, datetime
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from ..core.exceptions import ValidationException
from ..core.timezone_utils import ensure_utc, local_day_bounds
from ..models.booking import Booking
from ..repositories import RepositoryFactory
from ..repositories.conflict_checker_repository import ConflictCheckerRepository
from .base import BaseService

logger = logging.getLogger(__name__)


def intervals_overlap(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> bool:
    """True when half-open ``[a_start, a_end)`` and ``[b_start, b_end)`` intersect."""
    return ensure_utc(a_start) < ensure_utc(b_end) and ensure_utc(b_start) < ensure_utc(a_end)


def dedupe_ids(ids: Iterable[str]) -> List[str]:
    """Drop repeated ids, keeping first-seen order."""
    seen: Dict[str, None] = {}
    for value in ids:
        seen.setdefault(value, None)
    return list(seen)


@dataclass(frozen=True)
class Conflict:
    """An existing assignment that blocks a requested interval for one worker."""

    worker_id: str
    conflicting_booking_id: str
    conflicting_booking_reference: str
    conflicting_start: datetime
    conflicting_end: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "conflicting_booking_id": self.conflicting_booking_id,
            "conflicting_booking_reference": self.conflicting_booking_reference,
            "conflicting_interval": {
                "start": self.conflicting_start.isoformat(),
                "end": self.conflicting_end.isoformat(),
            },
        }


class ConflictChecker(BaseService):
    """
    Service for checking worker assignment conflicts.

    Read-only. It runs on the caller's session, so when the assignment
    service invokes it the check shares the write transaction's snapshot.
    """

    def __init__(self, db: Session, repository: Optional[ConflictCheckerRepository] = None):
        """
        Initialize conflict checker service.

        Args:
            db: Database session
            repository: Optional ConflictCheckerRepository instance
        """
        super().__init__(db)
        self.logger = logging.getLogger(__name__)
        self.repository = repository or RepositoryFactory.create_conflict_checker_repository(db)

    @staticmethod
    def validate_interval(start: datetime, end: datetime) -> Tuple[datetime, datetime]:
        """
        Normalize an interval to UTC and reject empty or inverted ones.

        Raises:
            ValidationException: If ``end <= start``
        """
        if start is None or end is None:
            raise ValidationException("Both start and end are required", code="INVALID_INTERVAL")
        start_utc, end_utc = ensure_utc(start), ensure_utc(end)
        if end_utc <= start_utc:
            raise ValidationException(
                "Interval end must be after its start",
                code="INVALID_INTERVAL",
                details={"start": start_utc.isoformat(), "end": end_utc.isoformat()},
            )
        return start_utc, end_utc

    @BaseService.measure_operation("find_conflicts")
    def find_conflicts(
        self,
        worker_ids: Sequence[str],
        start: datetime,
        end: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Conflict]:
        """
        Find existing assignments that overlap ``[start, end)`` for any of the workers.

        Args:
            worker_ids: Workers to check; repeated ids are checked once
            start: Interval start (naive values are treated as UTC)
            end: Interval end, exclusive
            exclude_booking_id: Booking to ignore, used when re-checking an edit

        Returns:
            One Conflict per (worker, conflicting booking), ordered by worker
            then start time. Empty when the interval is free.
        """
        ids = dedupe_ids(w for w in worker_ids if w)
        if not ids:
            raise ValidationException("At least one worker is required", code="NO_WORKERS")
        start_utc, end_utc = self.validate_interval(start, end)

        rows = self.repository.get_overlapping_assignments(ids, start_utc, end_utc, exclude_booking_id)

        conflicts: List[Conflict] = []
        for assignment, booking in rows:
            existing_start = ensure_utc(assignment.starts_at)
            existing_end = ensure_utc(assignment.ends_at)
            if not intervals_overlap(existing_start, existing_end, start_utc, end_utc):
                continue
            conflicts.append(
                Conflict(
                    worker_id=assignment.worker_id,
                    conflicting_booking_id=booking.id,
                    conflicting_booking_reference=booking.booking_number,
                    conflicting_start=existing_start,
                    conflicting_end=existing_end,
                )
            )

        if conflicts:
            self.logger.warning(
                f"Found {len(conflicts)} worker conflicts between "
                f"{start_utc.isoformat()}-{end_utc.isoformat()}",
                extra={"event": "conflicts_found", "worker_ids": ids},
            )
        return conflicts

    def find_conflicts_for_booking(self, booking: Booking, worker_ids: Sequence[str]) -> List[Conflict]:
        """Check the booking's own interval, ignoring the booking itself."""
        return self.find_conflicts(worker_ids, booking.starts_at, booking.ends_at, booking.id)

    @BaseService.measure_operation("get_worker_schedule")
    def get_worker_schedule(self, worker_id: str, day: date) -> List[Dict[str, Any]]:
        """
        Active assignments for a worker on a business-local day.

        Returns:
            Entries ordered by start with booking reference and interval
        """
        if not worker_id:
            raise ValidationException("Worker id is required", code="NO_WORKERS")
        day_start, day_end = local_day_bounds(day)
        schedule = []
        for assignment in self.repository.list_assignments([worker_id], day_start, day_end):
            booking = assignment.booking
            schedule.append(
                {
                    "assignment_id": assignment.id,
                    "booking_id": booking.id,
                    "booking_reference": booking.booking_number,
                    "status": booking.status,
                    "start": ensure_utc(assignment.starts_at).isoformat(),
                    "end": ensure_utc(assignment.ends_at).isoformat(),
                }
            )
        return schedule


__all__ = ["Conflict", "ConflictChecker", "dedupe_ids", "intervals_overlap"]
