# backend/salon_engine/repositories/event_outbox_repository.py
"""
Notification outbox access.

Rows are added by the publisher inside the booking transaction and consumed
by the Celery deliverer. The repository never commits.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Optional

from sqlalchemy import insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.orm import Session
import ulid

from ..database.session_utils import get_dialect_name
from ..models.event_outbox import EventOutbox, EventOutboxStatus

logger = logging.getLogger(__name__)


class EventOutboxRepository:
    def __init__(self, db: Session):
        self.db = db
        self._dialect = get_dialect_name(db, default="postgresql").lower()

    def enqueue(
        self,
        event_type: str,
        booking_id: str,
        dedup_key: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> EventOutbox:
        """
        Add a row unless ``dedup_key`` is already present.

        A replayed transition returns the row written the first time, with its
        delivery state untouched.
        """
        row_id = str(ulid.ULID())
        values = {
            "id": row_id,
            "event_type": event_type,
            "booking_id": booking_id,
            "dedup_key": dedup_key,
            "payload": payload or {},
            "status": EventOutboxStatus.PENDING.value,
            "attempt_count": 0,
            "next_attempt_at": datetime.now(timezone.utc),
        }

        if self._dialect == "postgresql":
            stmt = (
                pg_insert(EventOutbox)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["dedup_key"])
                .returning(EventOutbox.id)
            )
            added = self.db.execute(stmt).scalar_one_or_none() is not None
        else:
            stmt = insert(EventOutbox).values(**values)
            if self._dialect == "sqlite":
                stmt = stmt.prefix_with("OR IGNORE")
            added = bool(self.db.execute(stmt).rowcount)

        if added:
            self.db.flush()
            return self.db.get(EventOutbox, row_id)

        logger.debug("Notification %s already queued", dedup_key)
        return self.get_by_key(dedup_key)

    def due(self, now: Optional[datetime] = None, limit: int = 200) -> list[EventOutbox]:
        """PENDING rows whose next attempt time has passed, oldest first."""
        stmt = (
            select(EventOutbox)
            .where(
                EventOutbox.status == EventOutboxStatus.PENDING.value,
                EventOutbox.next_attempt_at <= (now or datetime.now(timezone.utc)),
            )
            .order_by(EventOutbox.next_attempt_at, EventOutbox.id)
            .limit(limit)
        )
        if self._dialect == "postgresql":
            # concurrent dispatchers split the batch instead of double-sending
            stmt = stmt.with_for_update(skip_locked=True)
        return list(self.db.execute(stmt).scalars().all())

    def claim(self, event_id: str) -> Optional[EventOutbox]:
        """Load one row for delivery, locked where the backend supports it."""
        stmt = select(EventOutbox).where(EventOutbox.id == event_id)
        if self._dialect == "postgresql":
            stmt = stmt.with_for_update(skip_locked=True)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_key(self, dedup_key: str) -> Optional[EventOutbox]:
        return self.db.execute(
            select(EventOutbox).where(EventOutbox.dedup_key == dedup_key)
        ).scalar_one_or_none()

    def list_for_booking(self, booking_id: str) -> list[EventOutbox]:
        return list(
            self.db.execute(
                select(EventOutbox)
                .where(EventOutbox.booking_id == booking_id)
                .order_by(EventOutbox.created_at, EventOutbox.id)
            )
            .scalars()
            .all()
        )
