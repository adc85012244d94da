# backend/salon_engine/schemas/booking.py
"""
Booking schemas for the salon booking engine.

Worker assignment requests and the booking views returned after a
lifecycle change. Intervals are always timezone-aware on the way out.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import Field, field_validator

from ..core.enums import BookingStatus
from .base import Money, StandardizedModel, StrictRequestModel


class AssignWorkersRequest(StrictRequestModel):
    """Assign one or more workers to a booking."""

    worker_ids: List[str] = Field(..., min_length=1, description="Workers to assign")
    replace: bool = Field(False, description="Release the booking's current workers first")
    timeout_seconds: Optional[float] = Field(None, gt=0, le=60)

    @field_validator("worker_ids")
    @classmethod
    def _strip_ids(cls, value: List[str]) -> List[str]:
        cleaned = [v.strip() for v in value if v and v.strip()]
        if not cleaned:
            raise ValueError("worker_ids must contain at least one id")
        return cleaned


class CancelBookingRequest(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=500)


class BookingStatusUpdate(StrictRequestModel):
    status: BookingStatus


class RescheduleBookingRequest(StrictRequestModel):
    """Move a booking; assigned workers move with it."""

    scheduled_at: datetime
    duration_minutes: Optional[int] = Field(None, gt=0, le=24 * 60)


class ConflictInterval(StandardizedModel):
    start: datetime
    end: datetime


class ConflictResponse(StandardizedModel):
    worker_id: str
    conflicting_booking_id: str
    conflicting_booking_reference: str
    conflicting_interval: ConflictInterval


class ConflictCheckResponse(StandardizedModel):
    has_conflicts: bool
    conflicts: List[ConflictResponse]


class AssignmentResponse(StandardizedModel):
    booking_id: str
    booking_reference: str
    worker_ids: List[str]
    assignment_ids: List[str]
    status: str
    payment_status: str
    worker_assigned: bool
    replaced: bool
    attempts: int
    assigned_at: Optional[datetime] = None
    released_worker_ids: List[str] = Field(default_factory=list)


class BookingResponse(StandardizedModel):
    """Booking view returned after lifecycle changes."""

    id: str
    booking_number: str
    scheduled_at: datetime
    duration_minutes: int
    customer_name: Optional[str] = None
    customer_type: str
    status: str
    payment_status: str
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    total_amount: Optional[Money] = None
    worker_assigned: bool
    active_worker_ids: List[str] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
