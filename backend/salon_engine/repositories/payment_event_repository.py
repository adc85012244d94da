# backend/salon_engine/repositories/payment_event_repository.py
"""
Repository for the payment event ledger and the anomaly review queue.

``record_event`` is the only write path into ``payment_events`` and is
conflict-tolerant: the first insert for an external reference wins and any
later insert for the same reference is reported as a duplicate.
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, Optional, cast

from sqlalchemy import insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import ulid

from ..core.exceptions import DuplicatePaymentEventException, RepositoryException
from ..core.timezone_utils import ensure_utc, utc_now
from ..database.session_utils import get_dialect_name
from ..models.payment_event import PaymentAnomaly, PaymentEvent

logger = logging.getLogger(__name__)


class PaymentEventRepository:
    """Data access helpers for payment events and anomalies."""

    def __init__(self, db: Session):
        self.db = db
        self._dialect = get_dialect_name(db, default="postgresql").lower()

    # ------------------------------------------------------------------ events
    def get_by_reference(self, external_reference: str) -> Optional[PaymentEvent]:
        result = self.db.execute(
            select(PaymentEvent).where(PaymentEvent.external_reference == external_reference)
        )
        return cast(Optional[PaymentEvent], result.scalar_one_or_none())

    def record_event(
        self,
        *,
        booking_id: str,
        channel: str,
        external_reference: str,
        event_type: str,
        reported_status: str,
        outcome: str,
        payload: Optional[dict[str, Any]] = None,
        amount: Any = None,
        payment_method: Optional[str] = None,
        actor_id: Optional[str] = None,
        received_at: Optional[datetime] = None,
    ) -> PaymentEvent:
        """
        Append a payment event unless its external reference is already recorded.

        Raises:
            DuplicatePaymentEventException: The reference was recorded first by
                another delivery (possibly a concurrent transaction)
        """
        event_id = str(ulid.ULID())
        values = {
            "id": event_id,
            "booking_id": booking_id,
            "channel": channel,
            "external_reference": external_reference,
            "event_type": event_type,
            "reported_status": reported_status,
            "outcome": outcome,
            "payload": payload or {},
            "amount": amount,
            "payment_method": payment_method,
            "actor_id": actor_id,
            "received_at": ensure_utc(received_at or utc_now()),
        }

        try:
            inserted = False
            if self._dialect == "postgresql":
                stmt = (
                    pg_insert(PaymentEvent)
                    .values(**values)
                    .on_conflict_do_nothing(index_elements=["external_reference"])
                    .returning(PaymentEvent.id)
                )
                inserted = self.db.execute(stmt).scalar_one_or_none() is not None
            else:
                stmt = insert(PaymentEvent).values(**values)
                if self._dialect == "sqlite":
                    stmt = stmt.prefix_with("OR IGNORE")
                result = self.db.execute(stmt)
                inserted = bool(getattr(result, "rowcount", 0))
        except SQLAlchemyError as e:
            logger.error("Failed to record payment event %s: %s", external_reference, e)
            raise RepositoryException(f"Failed to record payment event: {str(e)}") from e

        if not inserted:
            raise DuplicatePaymentEventException(external_reference)

        self.db.flush()
        row = cast(Optional[PaymentEvent], self.db.get(PaymentEvent, event_id))
        if row is None:
            raise RepositoryException("Inserted payment event could not be reloaded")
        return row

    def find_recent_event(
        self,
        external_reference: str,
        *,
        channel: str,
        reported_status: str,
        since: datetime,
    ) -> Optional[PaymentEvent]:
        """Latest event for the reference on a channel, received after ``since``."""
        result = self.db.execute(
            select(PaymentEvent)
            .where(PaymentEvent.external_reference == external_reference)
            .where(PaymentEvent.channel == channel)
            .where(PaymentEvent.reported_status == reported_status)
            .where(PaymentEvent.received_at >= ensure_utc(since))
            .order_by(PaymentEvent.received_at.desc())
            .limit(1)
        )
        return cast(Optional[PaymentEvent], result.scalar_one_or_none())

    def list_for_booking(self, booking_id: str) -> list[PaymentEvent]:
        result = self.db.execute(
            select(PaymentEvent)
            .where(PaymentEvent.booking_id == booking_id)
            .order_by(PaymentEvent.received_at.asc(), PaymentEvent.id.asc())
        )
        return list(result.scalars().all())

    # --------------------------------------------------------------- anomalies
    def create_anomaly(
        self,
        *,
        booking_id: str,
        channel: str,
        current_status: str,
        reported_status: str,
        reason: str,
        payment_event_id: Optional[str] = None,
    ) -> PaymentAnomaly:
        anomaly = PaymentAnomaly(
            booking_id=booking_id,
            payment_event_id=payment_event_id,
            channel=channel,
            current_status=current_status,
            reported_status=reported_status,
            reason=reason,
        )
        self.db.add(anomaly)
        self.db.flush()
        return anomaly

    def list_open_anomalies(self, booking_id: Optional[str] = None, limit: int = 200) -> list[PaymentAnomaly]:
        stmt = select(PaymentAnomaly).where(PaymentAnomaly.resolved_at.is_(None))
        if booking_id is not None:
            stmt = stmt.where(PaymentAnomaly.booking_id == booking_id)
        stmt = stmt.order_by(PaymentAnomaly.created_at.asc(), PaymentAnomaly.id.asc()).limit(limit)
        return list(self.db.execute(stmt).scalars().all())
