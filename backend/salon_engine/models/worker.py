# backend/salon_engine/models/worker.py
"""
Worker model.

Workers are the salon staff that bookings are assigned to. Whether a
worker can take new assignments is decided by ``is_active`` together
with the attendance-driven ``current_status``.
"""

from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import ASSIGNABLE_WORKER_STATUSES, WorkerRole, WorkerStatus
from ..database import Base


class Worker(Base):
    """Salon staff member that can be assigned to bookings."""

    __tablename__ = "workers"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True, unique=True)
    role = Column(String(20), nullable=False, default=WorkerRole.STAFF.value)
    is_active = Column(Boolean, nullable=False, default=True)
    current_status = Column(String(20), nullable=False, default=WorkerStatus.AVAILABLE.value)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    assignments = relationship(
        "WorkerAssignment",
        back_populates="worker",
        lazy="select",
    )

    @property
    def is_assignable(self) -> bool:
        return bool(self.is_active) and self.current_status in {s.value for s in ASSIGNABLE_WORKER_STATUSES}

    @property
    def is_admin(self) -> bool:
        return self.role == WorkerRole.ADMIN.value

    def __repr__(self) -> str:
        return f"<Worker {self.id} {self.name!r} {self.current_status}>"
