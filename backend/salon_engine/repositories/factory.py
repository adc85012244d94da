# backend/salon_engine/repositories/factory.py
"""
Single place services get their repositories from.

Imports are deferred so model modules can import repositories without cycles.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

if TYPE_CHECKING:
    from .booking_repository import BookingRepository
    from .conflict_checker_repository import ConflictCheckerRepository
    from .event_outbox_repository import EventOutboxRepository
    from .payment_event_repository import PaymentEventRepository
    from .worker_assignment_repository import WorkerAssignmentRepository
    from .worker_repository import WorkerRepository


class RepositoryFactory:
    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_conflict_checker_repository(db: Session) -> "ConflictCheckerRepository":
        from .conflict_checker_repository import ConflictCheckerRepository

        return ConflictCheckerRepository(db)

    @staticmethod
    def create_worker_repository(db: Session) -> "WorkerRepository":
        from .worker_repository import WorkerRepository

        return WorkerRepository(db)

    @staticmethod
    def create_worker_assignment_repository(db: Session) -> "WorkerAssignmentRepository":
        from .worker_assignment_repository import WorkerAssignmentRepository

        return WorkerAssignmentRepository(db)

    @staticmethod
    def create_payment_event_repository(db: Session) -> "PaymentEventRepository":
        """Ledger of payment events plus the anomaly review queue."""
        from .payment_event_repository import PaymentEventRepository

        return PaymentEventRepository(db)

    @staticmethod
    def create_event_outbox_repository(db: Session) -> "EventOutboxRepository":
        from .event_outbox_repository import EventOutboxRepository

        return EventOutboxRepository(db)
