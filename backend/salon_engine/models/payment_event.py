"""Payment event ledger and anomaly review models."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy import DateTime, ForeignKey, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON
import ulid

from ..database import Base


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class PaymentEvent(Base):
    """
    Append-only record of a payment outcome reported by one channel.

    ``external_reference`` is the deduplication key: a reference is recorded
    at most once, whichever channel reports it first.
    """

    __tablename__ = "payment_events"

    __table_args__ = (
        sa.UniqueConstraint("external_reference", name="uq_payment_events_external_reference"),
        sa.Index("ix_payment_events_booking_id", "booking_id"),
        sa.Index("ix_payment_events_channel_received_at", "channel", "received_at"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[str] = mapped_column(String(26), ForeignKey("bookings.id"), nullable=False)
    channel: Mapped[str] = mapped_column(String(30), nullable=False)
    external_reference: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    reported_status: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"),
        nullable=False,
        default=dict,
    )
    actor_id: Mapped[str | None] = mapped_column(String(26), nullable=True)
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_now_utc,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<PaymentEvent {self.channel}:{self.external_reference} -> {self.reported_status}>"


class PaymentAnomaly(Base):
    """Conflicting terminal payment report held for manual review."""

    __tablename__ = "payment_anomalies"

    __table_args__ = (
        sa.Index("ix_payment_anomalies_booking_id", "booking_id"),
        sa.Index("ix_payment_anomalies_resolved_at", "resolved_at"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[str] = mapped_column(String(26), ForeignKey("bookings.id"), nullable=False)
    payment_event_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("payment_events.id"), nullable=True
    )
    channel: Mapped[str] = mapped_column(String(30), nullable=False)
    current_status: Mapped[str] = mapped_column(String(20), nullable=False)
    reported_status: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_now_utc,
        server_default=func.now(),
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by_id: Mapped[str | None] = mapped_column(String(26), nullable=True)
    resolution_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    payment_event: Mapped[Optional[PaymentEvent]] = relationship("PaymentEvent")

    def resolve(self, actor_id: str, note: str | None) -> None:
        self.resolved_at = _now_utc()
        self.resolved_by_id = actor_id
        self.resolution_note = note
