# backend/alembic/versions/001_booking_engine.py
"""Booking engine - workers, bookings, assignments, payment ledger, outbox

Revision ID: 001_booking_engine
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the scheduling and reconciliation schema. On PostgreSQL the worker
double-booking guard is enforced by an exclusion constraint over active
assignments, so overlapping intervals for one worker can never both commit
regardless of isolation level.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_booking_engine"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _json_type() -> sa.types.TypeEngine:
    return postgresql.JSONB(astext_type=sa.Text()).with_variant(sa.JSON(), "sqlite")


def upgrade() -> None:
    """Create booking engine tables."""
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"

    if is_postgres:
        # Needed for the worker_id equality operator inside a gist index
        op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")

    op.create_table(
        "workers",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="staff"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("current_status", sa.String(20), nullable=False, server_default="available"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index("ix_workers_id", "workers", ["id"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("booking_number", sa.String(32), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        # Customer snapshot; walk-ins may have no customer_id
        sa.Column("customer_id", sa.String(26), nullable=True),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("customer_email", sa.String(255), nullable=True),
        sa.Column("customer_phone", sa.String(50), nullable=True),
        sa.Column("customer_type", sa.String(20), nullable=False, server_default="pre_booked"),
        sa.Column("status", sa.String(30), nullable=False, server_default="pending_confirmation"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("payment_method", sa.String(50), nullable=True),
        sa.Column("payment_reference", sa.String(255), nullable=True),
        sa.Column("payment_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by_id", sa.String(26), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("booking_number"),
        sa.CheckConstraint("duration_minutes > 0", name="check_duration_positive"),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_scheduled_at", "bookings", ["scheduled_at"])
    op.create_index("ix_bookings_customer_id", "bookings", ["customer_id"])
    op.create_index("ix_bookings_status", "bookings", ["status"])
    op.create_index("ix_bookings_payment_status", "bookings", ["payment_status"])
    op.create_index("ix_bookings_payment_reference", "bookings", ["payment_reference"])
    op.create_index("ix_bookings_status_scheduled_at", "bookings", ["status", "scheduled_at"])

    op.create_table(
        "booking_service_items",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("booking_id", sa.String(26), nullable=False),
        sa.Column("service_id", sa.String(26), nullable=False),
        sa.Column("service_name", sa.String(255), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"], ondelete="CASCADE"),
        sa.CheckConstraint("quantity > 0", name="check_quantity_positive"),
    )
    op.create_index("ix_booking_service_items_booking_id", "booking_service_items", ["booking_id"])

    op.create_table(
        "worker_assignments",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("booking_id", sa.String(26), nullable=False),
        sa.Column("worker_id", sa.String(26), nullable=False),
        # Denormalised booking interval so the exclusion constraint sees it
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="primary"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("assigned_by_id", sa.String(26), nullable=True),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"]),
        sa.ForeignKeyConstraint(["worker_id"], ["workers.id"]),
        sa.UniqueConstraint("booking_id", "worker_id", name="uq_worker_assignments_booking_worker"),
        sa.CheckConstraint("ends_at > starts_at", name="check_assignment_interval"),
    )
    op.create_index("ix_worker_assignments_booking_id", "worker_assignments", ["booking_id"])
    op.create_index("ix_worker_assignments_worker_id", "worker_assignments", ["worker_id"])
    op.create_index(
        "ix_worker_assignments_worker_active_start",
        "worker_assignments",
        ["worker_id", "is_active", "starts_at"],
    )
    if is_postgres:
        op.execute(
            """
            ALTER TABLE worker_assignments
            ADD CONSTRAINT ex_worker_assignments_no_overlap
            EXCLUDE USING gist (
                worker_id WITH =,
                tstzrange(starts_at, ends_at, '[)') WITH &&
            ) WHERE (is_active)
            """
        )

    op.create_table(
        "payment_events",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("booking_id", sa.String(26), nullable=False),
        sa.Column("channel", sa.String(30), nullable=False),
        sa.Column("external_reference", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("reported_status", sa.String(20), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("payment_method", sa.String(50), nullable=True),
        sa.Column("payload", _json_type(), nullable=False),
        sa.Column("actor_id", sa.String(26), nullable=True),
        sa.Column("outcome", sa.String(20), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"]),
        sa.UniqueConstraint("external_reference", name="uq_payment_events_external_reference"),
    )
    op.create_index("ix_payment_events_booking_id", "payment_events", ["booking_id"])
    op.create_index(
        "ix_payment_events_channel_received_at", "payment_events", ["channel", "received_at"]
    )

    op.create_table(
        "payment_anomalies",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("booking_id", sa.String(26), nullable=False),
        sa.Column("payment_event_id", sa.String(26), nullable=True),
        sa.Column("channel", sa.String(30), nullable=False),
        sa.Column("current_status", sa.String(20), nullable=False),
        sa.Column("reported_status", sa.String(20), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by_id", sa.String(26), nullable=True),
        sa.Column("resolution_note", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"]),
        sa.ForeignKeyConstraint(["payment_event_id"], ["payment_events.id"]),
    )
    op.create_index("ix_payment_anomalies_booking_id", "payment_anomalies", ["booking_id"])
    op.create_index("ix_payment_anomalies_resolved_at", "payment_anomalies", ["resolved_at"])

    op.create_table(
        "notification_outbox",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("booking_id", sa.String(26), nullable=False),
        sa.Column("dedup_key", sa.String(255), nullable=False),
        sa.Column("payload", _json_type(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("dedup_key", name="uq_notification_outbox_dedup_key"),
    )
    op.create_index("ix_notification_outbox_event_type", "notification_outbox", ["event_type"])
    op.create_index("ix_notification_outbox_booking_id", "notification_outbox", ["booking_id"])
    op.create_index("ix_notification_outbox_status", "notification_outbox", ["status"])
    op.create_index("ix_notification_outbox_next_attempt_at", "notification_outbox", ["next_attempt_at"])


def downgrade() -> None:
    """Drop booking engine tables."""
    op.drop_table("notification_outbox")
    op.drop_table("payment_anomalies")
    op.drop_table("payment_events")
    op.drop_table("worker_assignments")
    op.drop_table("booking_service_items")
    op.drop_table("bookings")
    op.drop_table("workers")
