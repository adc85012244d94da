"""
Repository layer for the salon booking engine.

Repositories own every query; services own every transaction boundary.
"""

from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .conflict_checker_repository import ConflictCheckerRepository
from .event_outbox_repository import EventOutboxRepository
from .factory import RepositoryFactory
from .payment_event_repository import PaymentEventRepository
from .worker_assignment_repository import WorkerAssignmentRepository
from .worker_repository import WorkerRepository

__all__ = [
    "BaseRepository",
    "BookingRepository",
    "ConflictCheckerRepository",
    "EventOutboxRepository",
    "PaymentEventRepository",
    "RepositoryFactory",
    "WorkerAssignmentRepository",
    "WorkerRepository",
]
