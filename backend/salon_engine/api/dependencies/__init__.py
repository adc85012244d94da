# backend/salon_engine/api/dependencies/__init__.py
"""
Central export point for all dependencies.

This module re-exports all dependencies from submodules
for convenient access throughout the application.
"""

from .actor import get_actor
from .database import get_db
from .services import (
    get_booking_service,
    get_conflict_checker,
    get_payment_service,
    get_queue_service,
    get_worker_assignment_service,
)

__all__ = [
    "get_actor",
    "get_db",
    "get_booking_service",
    "get_conflict_checker",
    "get_payment_service",
    "get_queue_service",
    "get_worker_assignment_service",
]
