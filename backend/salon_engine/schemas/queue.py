# backend/salon_engine/schemas/queue.py
"""Queue views for the front desk."""

from datetime import date, datetime
from typing import List, Optional

from .base import StandardizedModel


class QueueEntryResponse(StandardizedModel):
    rank: int
    booking_id: str
    booking_reference: str
    customer_name: Optional[str] = None
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


class QueueResponse(StandardizedModel):
    as_of: date
    ordering: str
    entries: List[QueueEntryResponse]


class QueueStatsResponse(StandardizedModel):
    as_of: date
    total: int
    ready_for_service: int
    payment_pending: int
    in_progress: int
    completed_today: int
