"""
Database models for the salon booking engine.

- Worker: salon staff that bookings are assigned to
- Booking / BookingServiceItem: bookings and their service lines
- WorkerAssignment: worker-to-booking interval assignments
- PaymentEvent / PaymentAnomaly: payment ledger and review queue
- EventOutbox: transactional outbox for booking state changes
"""

from .booking import Booking, BookingServiceItem
from .event_outbox import EventOutbox, EventOutboxStatus
from .payment_event import PaymentAnomaly, PaymentEvent
from .worker import Worker
from .worker_assignment import WorkerAssignment

__all__ = [
    "Booking",
    "BookingServiceItem",
    "EventOutbox",
    "EventOutboxStatus",
    "PaymentAnomaly",
    "PaymentEvent",
    "Worker",
    "WorkerAssignment",
]
