# backend/salon_engine/services/queue_service.py
"""
Queue Priority Calculator.

Two named orderings over the same day's active bookings:

- ``service_queue``: who to serve next. Unpaid bookings first so payment is
  collected before service, then walk-ins, then scheduled time.
- ``payment_queue``: which bookings are ready for processing. Paid bookings
  first, then walk-ins, then scheduled time.

Both end with the booking id as the final key, so the order does not depend
on the order the bookings were loaded in. Queues are recomputed on every
read and never cached.
"""

from dataclasses import asdict, dataclass
from datetime import date, datetime
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import BookingStatus, CustomerType, PaymentStatus
from ..core.timezone_utils import business_today, ensure_utc, local_date, local_day_bounds, utc_now
from ..repositories import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)

SERVICE_QUEUE = "service_queue"
PAYMENT_QUEUE = "payment_queue"

_EXCLUDED_STATUSES = frozenset({BookingStatus.COMPLETED.value, BookingStatus.CANCELLED.value})


class QueueBooking(Protocol):
    id: str
    booking_number: str
    scheduled_at: datetime
    duration_minutes: int
    customer_id: Optional[str]
    customer_name: Optional[str]
    customer_type: str
    status: str
    payment_status: str


@dataclass(frozen=True)
class QueueEntry:
    """A booking's position in one of the day's queues."""

    rank: int
    booking_id: str
    booking_reference: str
    customer_name: Optional[str]
    customer_type: str
    is_walk_in: bool
    status: str
    payment_status: str
    scheduled_at: datetime
    duration_minutes: int
    estimated_wait_minutes: int
    minutes_until_scheduled: int
    is_upcoming: bool
    is_overdue: bool

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["scheduled_at"] = self.scheduled_at.isoformat()
        return data


def is_walk_in(booking: QueueBooking) -> bool:
    """Tagged walk-in, or no customer account on file."""
    return booking.customer_type == CustomerType.WALK_IN.value or not booking.customer_id


def _is_paid(booking: QueueBooking) -> bool:
    return booking.payment_status == PaymentStatus.COMPLETED.value


def service_queue_key(booking: QueueBooking) -> Tuple[int, int, datetime, str]:
    """Unpaid (pending, failed, refunded) before paid."""
    return (
        1 if _is_paid(booking) else 0,
        0 if is_walk_in(booking) else 1,
        ensure_utc(booking.scheduled_at),
        str(booking.id),
    )


def payment_queue_key(booking: QueueBooking) -> Tuple[int, int, datetime, str]:
    """Paid before unpaid."""
    return (
        0 if _is_paid(booking) else 1,
        0 if is_walk_in(booking) else 1,
        ensure_utc(booking.scheduled_at),
        str(booking.id),
    )


ORDERINGS: Dict[str, Callable[[QueueBooking], Tuple[int, int, datetime, str]]] = {
    SERVICE_QUEUE: service_queue_key,
    PAYMENT_QUEUE: payment_queue_key,
}


def _active_on(bookings: Iterable[QueueBooking], as_of: date, tz_name: Optional[str]) -> List[QueueBooking]:
    return [
        b
        for b in bookings
        if b.status not in _EXCLUDED_STATUSES and local_date(b.scheduled_at, tz_name) == as_of
    ]


def compute_queue(
    bookings: Iterable[QueueBooking],
    as_of: date,
    ordering: str = SERVICE_QUEUE,
    *,
    now: Optional[datetime] = None,
    tz_name: Optional[str] = None,
) -> List[QueueEntry]:
    """
    Rank the day's active bookings under a named ordering.

    Pure: no I/O, and the same input in any order gives the same output.

    Args:
        bookings: Candidate bookings (any day, any status)
        as_of: Business-local day to build the queue for
        ordering: ``service_queue`` or ``payment_queue``
        now: Reference time for the timing flags; defaults to the current time
        tz_name: Business timezone override

    Returns:
        Entries with 1-based ranks
    """
    try:
        key = ORDERINGS[ordering]
    except KeyError:
        raise ValueError(f"Unknown queue ordering: {ordering}") from None

    reference = ensure_utc(now) if now is not None else utc_now()
    overdue_after = settings.queue_overdue_after_minutes
    upcoming_within = settings.queue_upcoming_within_minutes

    entries: List[QueueEntry] = []
    wait = 0
    for rank, booking in enumerate(sorted(_active_on(bookings, as_of, tz_name), key=key), start=1):
        scheduled = ensure_utc(booking.scheduled_at)
        minutes_until = int((scheduled - reference).total_seconds() // 60)
        entries.append(
            QueueEntry(
                rank=rank,
                booking_id=booking.id,
                booking_reference=booking.booking_number,
                customer_name=booking.customer_name,
                customer_type=booking.customer_type,
                is_walk_in=is_walk_in(booking),
                status=booking.status,
                payment_status=booking.payment_status,
                scheduled_at=scheduled,
                duration_minutes=int(booking.duration_minutes),
                estimated_wait_minutes=wait,
                minutes_until_scheduled=minutes_until,
                is_upcoming=-overdue_after <= minutes_until <= upcoming_within,
                is_overdue=minutes_until < -overdue_after,
            )
        )
        wait += int(booking.duration_minutes or settings.queue_default_service_minutes)
    return entries


def compute_service_queue(bookings: Iterable[QueueBooking], as_of: date, **kwargs: Any) -> List[QueueEntry]:
    return compute_queue(bookings, as_of, SERVICE_QUEUE, **kwargs)


def compute_payment_queue(bookings: Iterable[QueueBooking], as_of: date, **kwargs: Any) -> List[QueueEntry]:
    return compute_queue(bookings, as_of, PAYMENT_QUEUE, **kwargs)


def compute_queue_stats(
    bookings: Iterable[QueueBooking], as_of: date, tz_name: Optional[str] = None
) -> Dict[str, int]:
    """Dashboard counters for a day. Cancelled bookings are not counted."""
    todays = [
        b
        for b in bookings
        if b.status != BookingStatus.CANCELLED.value and local_date(b.scheduled_at, tz_name) == as_of
    ]
    scheduled = [b for b in todays if b.status == BookingStatus.SCHEDULED.value]
    return {
        "total": len(todays),
        "ready_for_service": sum(1 for b in scheduled if _is_paid(b)),
        "payment_pending": sum(1 for b in scheduled if not _is_paid(b)),
        "in_progress": sum(1 for b in todays if b.status == BookingStatus.IN_PROGRESS.value),
        "completed_today": sum(1 for b in todays if b.status == BookingStatus.COMPLETED.value),
    }


class QueueService(BaseService):
    """Loads a day's bookings and applies the pure queue functions."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)

    def _load_day(self, as_of: date) -> List[QueueBooking]:
        start, end = local_day_bounds(as_of)
        return list(
            self.booking_repository.list_scheduled_between(
                start, end, exclude_statuses=[BookingStatus.CANCELLED]
            )
        )

    @BaseService.measure_operation("get_queue")
    def get_queue(
        self,
        ordering: str = SERVICE_QUEUE,
        as_of: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> List[QueueEntry]:
        day = as_of or business_today()
        return compute_queue(self._load_day(day), day, ordering, now=now)

    @BaseService.measure_operation("queue_stats")
    def queue_stats(self, as_of: Optional[date] = None) -> Dict[str, int]:
        day = as_of or business_today()
        return compute_queue_stats(self._load_day(day), day)
