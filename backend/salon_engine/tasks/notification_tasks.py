# backend/salon_engine/tasks/notification_tasks.py
"""
Booking notification delivery.

``outbox.dispatch_pending`` runs on the beat schedule and fans due outbox rows
out to ``outbox.deliver_event``, which sends one row and books the result.
Backoff lives on the row (``next_attempt_at``); tasks never self-retry.
Failures only touch the outbox row. The booking change behind it was
committed earlier and stays committed.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator, Optional

from celery.utils.log import get_task_logger
from sqlalchemy.orm import Session

from ..core.config import settings
from ..database import SessionLocal
from ..models.event_outbox import EventOutboxStatus
from ..monitoring.prometheus_metrics import PrometheusMetrics
from ..repositories.event_outbox_repository import EventOutboxRepository
from ..services.notification_dispatcher import (
    NotificationDispatcher,
    build_message,
    get_notification_dispatcher,
)
from .celery_app import celery_app

logger = get_task_logger(__name__)

# seconds to wait after the 1st, 2nd, ... failed attempt
BACKOFF_SECONDS = [30, 120, 600, 1800, 7200]
DISPATCH_BATCH_SIZE = 200


def _next_backoff(attempt_number: int) -> int:
    return BACKOFF_SECONDS[min(max(attempt_number, 1), len(BACKOFF_SECONDS)) - 1]


@dataclass(frozen=True)
class DeliveryOutcome:
    event_id: str
    status: str
    attempt_count: int
    retry_in: Optional[int] = None
    error: Optional[str] = None


@contextmanager
def _task_session() -> Iterator[Session]:
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def deliver_outbox_event(
    session: Session,
    event_id: str,
    dispatcher: Optional[NotificationDispatcher] = None,
    max_attempts: Optional[int] = None,
) -> Optional[DeliveryOutcome]:
    """
    Send one outbox row and commit the bookkeeping.

    Returns None for a row that no longer exists. A row that is already SENT
    is reported as such without sending again, so a redelivered Celery
    message never notifies the customer twice.
    """
    dispatcher = dispatcher or get_notification_dispatcher()
    limit = max_attempts or settings.outbox_max_delivery_attempts

    event = EventOutboxRepository(session).claim(event_id)
    if event is None:
        logger.warning("Outbox event %s missing; skipping", event_id)
        return None
    if event.is_delivered:
        return DeliveryOutcome(event.id, event.status, event.attempt_count)

    attempt = event.attempt_count + 1
    message = build_message(event.event_type, event.payload or {}, event.dedup_key)
    PrometheusMetrics.record_notification_attempt(event.event_type)

    try:
        dispatcher.send(message)
    except Exception as exc:
        error = str(exc)
        retry_in = None if attempt >= limit else _next_backoff(attempt)
        event.record_failure(attempt, error, datetime.now(timezone.utc), retry_after=retry_in)
        session.commit()

        if retry_in is None:
            PrometheusMetrics.record_notification_outcome(event.event_type, "failed")
            logger.error("Giving up on %s for booking %s after %s attempts: %s",
                         event.event_type, event.booking_id, attempt, error)
        else:
            logger.warning("Delivery of %s failed (attempt %s), retrying in %ss",
                           event_id, attempt, retry_in)
        return DeliveryOutcome(event_id, event.status, attempt, retry_in=retry_in, error=error)

    event.record_success(attempt, datetime.now(timezone.utc))
    session.commit()
    PrometheusMetrics.record_notification_outcome(event.event_type, "sent")
    logger.info("Sent %s for booking %s", event.event_type, event.booking_id)
    return DeliveryOutcome(event_id, EventOutboxStatus.SENT.value, attempt)


@celery_app.task(name="outbox.dispatch_pending", max_retries=0, queue="notifications")
def dispatch_pending() -> int:
    """Queue a delivery task per due outbox row; returns how many were queued."""
    with _task_session() as session:
        due = EventOutboxRepository(session).due(limit=DISPATCH_BATCH_SIZE)
        for event in due:
            deliver_event.apply_async((event.id,), queue="notifications")
    if due:
        logger.info("Queued %s notification deliveries", len(due))
    return len(due)


@celery_app.task(name="outbox.deliver_event", max_retries=0, queue="notifications")
def deliver_event(event_id: str) -> Optional[str]:
    """
    Deliver one outbox row.

    A failed send is not retried through Celery: the row keeps its
    ``next_attempt_at`` and the next ``dispatch_pending`` run picks it up,
    so the outbox attempt counter is the only retry budget.
    """
    with _task_session() as session:
        outcome = deliver_outbox_event(session, event_id)
    return outcome.status if outcome is not None else None
