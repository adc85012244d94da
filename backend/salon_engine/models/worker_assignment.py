# backend/salon_engine/models/worker_assignment.py
"""
Worker assignment model.

Each row ties one worker to one booking. The service interval is
denormalised onto the row so overlaps can be enforced by the storage
layer: on PostgreSQL the migration adds an exclusion constraint over
``tstzrange(starts_at, ends_at, '[)')`` for active rows.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import AssignmentRole
from ..database import Base


class WorkerAssignment(Base):
    """Assignment of a worker to a booking's time interval."""

    __tablename__ = "worker_assignments"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(String(26), ForeignKey("bookings.id"), nullable=False, index=True)
    worker_id = Column(String(26), ForeignKey("workers.id"), nullable=False, index=True)

    # Half-open [starts_at, ends_at)
    starts_at = Column(DateTime(timezone=True), nullable=False)
    ends_at = Column(DateTime(timezone=True), nullable=False)

    role = Column(String(20), nullable=False, default=AssignmentRole.PRIMARY.value)
    is_active = Column(Boolean, nullable=False, default=True)
    assigned_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    assigned_by_id = Column(String(26), nullable=True)
    released_at = Column(DateTime(timezone=True), nullable=True)

    booking = relationship("Booking", back_populates="assignments")
    worker = relationship("Worker", back_populates="assignments")

    __table_args__ = (
        UniqueConstraint("booking_id", "worker_id", name="uq_worker_assignments_booking_worker"),
        CheckConstraint("ends_at > starts_at", name="check_assignment_interval"),
        Index("ix_worker_assignments_worker_active_start", "worker_id", "is_active", "starts_at"),
    )

    def __repr__(self) -> str:
        return f"<WorkerAssignment {self.worker_id}@{self.booking_id} [{self.starts_at}, {self.ends_at})>"
