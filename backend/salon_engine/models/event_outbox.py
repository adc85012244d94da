# backend/salon_engine/models/event_outbox.py
"""
Notification outbox rows.

A booking transition writes one row here inside its own transaction; the
Celery deliverer picks rows up afterwards and walks them to SENT or FAILED.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
import ulid

from ..database import Base

MAX_ERROR_LENGTH = 1000


class EventOutboxStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class EventOutbox(Base):
    """One booking notification waiting for (or done with) delivery."""

    __tablename__ = "notification_outbox"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    event_type = Column(String(100), nullable=False, index=True)
    booking_id = Column(String(26), nullable=False, index=True)
    # "<event_type>:<deterministic key>", unique so replays collapse
    dedup_key = Column(String(255), nullable=False)
    payload = Column(JSONB().with_variant(JSON(), "sqlite"), nullable=False, default=dict)
    status = Column(String(20), nullable=False, default=EventOutboxStatus.PENDING.value, index=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True, index=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (UniqueConstraint("dedup_key", name="uq_notification_outbox_dedup_key"),)

    @property
    def is_delivered(self) -> bool:
        return self.status == EventOutboxStatus.SENT.value

    def record_success(self, attempt: int, at: datetime) -> None:
        self.status = EventOutboxStatus.SENT.value
        self.attempt_count = attempt
        self.next_attempt_at = None
        self.last_error = None
        self.updated_at = at

    def record_failure(self, attempt: int, error: str, at: datetime, retry_after: int | None) -> None:
        """
        Book a failed attempt.

        ``retry_after`` of None gives up on the row; otherwise it goes back to
        PENDING and becomes eligible again after that many seconds.
        """
        self.attempt_count = attempt
        self.last_error = error[:MAX_ERROR_LENGTH] if error else None
        self.updated_at = at
        if retry_after is None:
            self.status = EventOutboxStatus.FAILED.value
            self.next_attempt_at = None
        else:
            self.status = EventOutboxStatus.PENDING.value
            self.next_attempt_at = at + timedelta(seconds=max(retry_after, 1))

    def __repr__(self) -> str:
        return f"<EventOutbox {self.event_type} booking={self.booking_id} status={self.status}>"
