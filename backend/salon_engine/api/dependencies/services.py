# backend/salon_engine/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected.
"""

from fastapi import Depends
from sqlalchemy.orm import Session

from ...services.booking_service import BookingService
from ...services.conflict_checker import ConflictChecker
from ...services.payment_reconciliation_service import PaymentReconciliationService
from ...services.queue_service import QueueService
from ...services.worker_assignment_service import WorkerAssignmentService
from .database import get_db


def get_conflict_checker(db: Session = Depends(get_db)) -> ConflictChecker:
    return ConflictChecker(db)


def get_worker_assignment_service(
    db: Session = Depends(get_db),
    conflict_checker: ConflictChecker = Depends(get_conflict_checker),
) -> WorkerAssignmentService:
    """
    Get worker assignment service with the request's conflict checker.

    Both share one session so the pre-insert conflict check and the insert
    run in the same transaction.
    """
    return WorkerAssignmentService(db, conflict_checker=conflict_checker)


def get_booking_service(db: Session = Depends(get_db)) -> BookingService:
    return BookingService(db)


def get_queue_service(db: Session = Depends(get_db)) -> QueueService:
    return QueueService(db)


def get_payment_service(db: Session = Depends(get_db)) -> PaymentReconciliationService:
    """Get payment reconciliation service; the gateway client comes from settings."""
    return PaymentReconciliationService(db)
