# backend/salon_engine/models/booking.py
"""
Booking model for the salon booking engine.

A booking carries two orthogonal state axes: the service lifecycle
(``status``) and the payment lifecycle (``payment_status``). A booking can
be ``scheduled`` while its payment is still ``pending``.

Bookings are never hard-deleted once referenced by a payment; cancellation
is a soft state change that also releases the assigned workers.
"""

from datetime import datetime, timedelta
import logging
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import (
    CLOSED_BOOKING_STATUSES,
    BookingStatus,
    CustomerType,
    PaymentStatus,
)
from ..core.timezone_utils import ensure_utc
from ..database import Base

logger = logging.getLogger(__name__)


def _booking_number() -> str:
    return f"BK-{str(ulid.ULID())[-8:]}"


class Booking(Base):
    """
    Salon booking record.

    Design: customer details are snapshotted on the booking so that walk-in
    customers without an account can still be served and invoiced.
    """

    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    booking_number = Column(String(32), nullable=False, unique=True, default=_booking_number)

    # Schedule
    scheduled_at = Column(DateTime(timezone=True), nullable=False, index=True)
    duration_minutes = Column(Integer, nullable=False)

    # Customer reference or inline snapshot
    customer_id = Column(String(26), nullable=True, index=True)
    customer_name = Column(String(255), nullable=True)
    customer_email = Column(String(255), nullable=True)
    customer_phone = Column(String(50), nullable=True)
    customer_type = Column(String(20), nullable=False, default=CustomerType.PRE_BOOKED.value)

    # Lifecycle
    status = Column(
        String(30), nullable=False, default=BookingStatus.PENDING_CONFIRMATION.value, index=True
    )
    notes = Column(Text, nullable=True)

    # Payment axis
    payment_status = Column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True
    )
    payment_method = Column(String(50), nullable=True)
    payment_reference = Column(String(255), nullable=True, index=True)
    payment_updated_at = Column(DateTime(timezone=True), nullable=True)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    # Cancellation tracking
    cancelled_by_id = Column(String(26), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    # Relationships
    service_items = relationship(
        "BookingServiceItem",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingServiceItem.id",
    )
    assignments = relationship(
        "WorkerAssignment",
        back_populates="booking",
        order_by="WorkerAssignment.assigned_at",
    )

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="check_duration_positive"),
        Index("ix_bookings_status_scheduled_at", "status", "scheduled_at"),
    )

    @property
    def starts_at(self) -> datetime:
        return ensure_utc(self.scheduled_at)

    @property
    def ends_at(self) -> datetime:
        """End of the half-open service interval."""
        return self.starts_at + timedelta(minutes=int(self.duration_minutes))

    @property
    def worker_assigned(self) -> bool:
        return any(a.is_active for a in self.assignments)

    @property
    def active_worker_ids(self) -> list[str]:
        return [a.worker_id for a in self.assignments if a.is_active]

    @property
    def is_walk_in(self) -> bool:
        """Walk-in bookings are tagged explicitly or have no customer account."""
        return self.customer_type == CustomerType.WALK_IN.value or not self.customer_id

    @property
    def is_closed(self) -> bool:
        return self.status in {s.value for s in CLOSED_BOOKING_STATUSES}

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.COMPLETED.value

    def mark_cancelled(self, actor_id: Optional[str], reason: Optional[str], at: datetime) -> None:
        self.status = BookingStatus.CANCELLED.value
        self.cancelled_at = at
        self.cancelled_by_id = actor_id
        self.cancellation_reason = reason

    def __repr__(self) -> str:
        return (
            f"<Booking {self.booking_number} {self.scheduled_at} "
            f"{self.status}/{self.payment_status}>"
        )


class BookingServiceItem(Base):
    """Service line on a booking, snapshotted at intake."""

    __tablename__ = "booking_service_items"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(
        String(26), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    service_id = Column(String(26), nullable=False)
    service_name = Column(String(255), nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False, default=0)
    quantity = Column(Integer, nullable=False, default=1)

    booking = relationship("Booking", back_populates="service_items")

    __table_args__ = (CheckConstraint("quantity > 0", name="check_quantity_positive"),)
