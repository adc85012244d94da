# backend/salon_engine/routes/v1/bookings.py
"""
Booking routes - API v1

Versioned booking endpoints under /api/v1/bookings.
Business logic is delegated to ConflictChecker, WorkerAssignmentService
and BookingService.

Endpoints:
    GET /conflicts - Preview worker conflicts for an interval
    GET /workers/{worker_id}/schedule - Worker's assignments for a day
    POST /{booking_id}/assign-workers - Assign workers atomically
    DELETE /{booking_id}/workers/{worker_id} - Release one worker
    POST /{booking_id}/cancel - Soft-cancel a booking
    PATCH /{booking_id}/status - Move a booking through its lifecycle
    PATCH /{booking_id} - Reschedule a booking and its assignments
"""

from datetime import date, datetime
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from ...api.dependencies import (
    get_actor,
    get_booking_service,
    get_conflict_checker,
    get_worker_assignment_service,
)
from ...core.actor import Actor
from ...core.exceptions import DomainException, ValidationException
from ...core.timezone_utils import business_today
from ...schemas.booking import (
    AssignmentResponse,
    AssignWorkersRequest,
    BookingResponse,
    BookingStatusUpdate,
    CancelBookingRequest,
    RescheduleBookingRequest,
    ConflictCheckResponse,
    ConflictResponse,
)
from ...services.booking_service import BookingService
from ...services.conflict_checker import ConflictChecker
from ...services.worker_assignment_service import WorkerAssignmentService
from ._errors import handle_domain_exception

logger = logging.getLogger(__name__)

router = APIRouter(tags=["bookings-v1"])


def _split_ids(raw: str) -> List[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


@router.get("/conflicts", response_model=ConflictCheckResponse)
def check_conflicts(
    worker_ids: str = Query(..., description="Comma-separated worker ids"),
    start: datetime = Query(...),
    end: datetime = Query(...),
    exclude_booking_id: Optional[str] = Query(None),
    checker: ConflictChecker = Depends(get_conflict_checker),
) -> ConflictCheckResponse:
    """Preview conflicts without mutating anything."""
    try:
        ids = _split_ids(worker_ids)
        if not ids:
            raise ValidationException("At least one worker id is required", code="NO_WORKERS")
        conflicts = checker.find_conflicts(ids, start, end, exclude_booking_id)
        return ConflictCheckResponse(
            has_conflicts=bool(conflicts),
            conflicts=[ConflictResponse.model_validate(c.to_dict()) for c in conflicts],
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/workers/{worker_id}/schedule")
def worker_schedule(
    worker_id: str,
    day: Optional[date] = Query(None, description="Business-local day, defaults to today"),
    checker: ConflictChecker = Depends(get_conflict_checker),
) -> Dict[str, Any]:
    try:
        target = day or business_today()
        return {
            "worker_id": worker_id,
            "date": target.isoformat(),
            "assignments": checker.get_worker_schedule(worker_id, target),
        }
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/assign-workers", response_model=AssignmentResponse)
def assign_workers(
    booking_id: str,
    payload: AssignWorkersRequest,
    actor: Actor = Depends(get_actor),
    service: WorkerAssignmentService = Depends(get_worker_assignment_service),
) -> AssignmentResponse:
    """
    Assign workers to a booking in one transaction.

    A conflict answers 409 and names every conflicting booking and interval.
    """
    try:
        result = service.assign_workers(
            booking_id,
            payload.worker_ids,
            actor,
            replace=payload.replace,
            timeout_seconds=payload.timeout_seconds,
        )
        return AssignmentResponse.model_validate(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.delete("/{booking_id}/workers/{worker_id}", response_model=BookingResponse)
def remove_worker(
    booking_id: str,
    worker_id: str,
    actor: Actor = Depends(get_actor),
    service: WorkerAssignmentService = Depends(get_worker_assignment_service),
) -> BookingResponse:
    try:
        booking = service.remove_worker(booking_id, worker_id, actor)
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(
    booking_id: str,
    payload: Optional[CancelBookingRequest] = None,
    actor: Actor = Depends(get_actor),
    service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = service.cancel_booking(booking_id, actor, payload.reason if payload else None)
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.patch("/{booking_id}/status", response_model=BookingResponse)
def update_booking_status(
    booking_id: str,
    payload: BookingStatusUpdate,
    actor: Actor = Depends(get_actor),
    service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = service.update_status(booking_id, payload.status, actor)
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.patch("/{booking_id}", response_model=BookingResponse)
def reschedule_booking(
    booking_id: str,
    payload: RescheduleBookingRequest,
    actor: Actor = Depends(get_actor),
    service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """
    Move a booking to a new start and/or duration.

    Assigned workers are re-checked; a clash answers 409 like assign-workers.
    """
    try:
        booking = service.reschedule(booking_id, payload.scheduled_at, payload.duration_minutes, actor)
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)
