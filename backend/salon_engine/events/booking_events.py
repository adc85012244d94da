"""Booking domain events."""
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class BookingEvent:
    """Base for facts emitted when a booking changes state."""

    booking_id: str
    booking_number: str
    status: str
    payment_status: str
    actor_id: Optional[str]
    occurred_at: datetime

    event_type = "booking.state_changed"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class WorkersAssigned(BookingEvent):
    """Fired after workers are committed to a booking."""

    worker_ids: List[str] = field(default_factory=list)
    replaced: bool = False

    event_type = "booking.workers_assigned"


@dataclass
class WorkerRemoved(BookingEvent):
    worker_id: str = ""

    event_type = "booking.worker_removed"


@dataclass
class BookingCancelled(BookingEvent):
    """Fired after a booking is soft-cancelled."""

    reason: Optional[str] = None

    event_type = "booking.cancelled"


@dataclass
class BookingStatusChanged(BookingEvent):
    previous_status: str = ""

    event_type = "booking.status_changed"


@dataclass
class PaymentStatusChanged(BookingEvent):
    """Fired after a payment transition is applied (never for duplicates)."""

    previous_payment_status: str = ""
    channel: str = ""
    external_reference: str = ""
    auto_advanced: bool = False

    event_type = "booking.payment_updated"


@dataclass
class PaymentAnomalyRaised(BookingEvent):
    """Fired when a conflicting terminal payment report is held for review."""

    anomaly_id: str = ""
    reported_status: str = ""
    channel: str = ""

    event_type = "booking.payment_anomaly"


@dataclass
class BookingRescheduled(BookingEvent):
    """Fired after a booking's interval moves, together with its assignments."""

    previous_start: Optional[datetime] = None
    previous_duration_minutes: int = 0
    duration_minutes: int = 0
    worker_ids: List[str] = field(default_factory=list)

    event_type = "booking.rescheduled"
