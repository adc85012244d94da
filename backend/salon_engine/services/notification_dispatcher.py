# backend/salon_engine/services/notification_dispatcher.py
"""
Notification dispatcher seam used by the outbox delivery task.

Delivery to email/WhatsApp belongs to an external collaborator. The engine
only hands it a rendered message and learns success or failure; a failure
never reaches back into booking state.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Callable, Dict, Optional, Protocol

logger = logging.getLogger(__name__)


class NotificationDeliveryError(RuntimeError):
    """Delivery failed in a way that is worth retrying later."""


@dataclass(frozen=True)
class NotificationMessage:
    event_type: str
    booking_id: str
    subject: str
    body: str
    idempotency_key: str


class NotificationDispatcher(Protocol):
    def send(self, message: NotificationMessage) -> None:
        ...


def _describe(event_type: str, payload: Dict[str, Any]) -> str:
    number = payload.get("booking_number") or payload.get("booking_id")
    if event_type == "booking.workers_assigned":
        workers = ", ".join(payload.get("worker_ids") or [])
        return f"Booking {number} assigned to {workers}"
    if event_type == "booking.worker_removed":
        return f"Worker {payload.get('worker_id')} removed from booking {number}"
    if event_type == "booking.cancelled":
        reason = payload.get("reason")
        return f"Booking {number} was cancelled" + (f": {reason}" if reason else "")
    if event_type == "booking.status_changed":
        return f"Booking {number} moved from {payload.get('previous_status')} to {payload.get('status')}"
    if event_type == "booking.payment_updated":
        message = f"Payment for booking {number} is now {payload.get('payment_status')}"
        if payload.get("auto_advanced"):
            message += "; service has started"
        return message
    if event_type == "booking.payment_anomaly":
        return (
            f"Payment anomaly on booking {number}: {payload.get('channel')} reported "
            f"{payload.get('reported_status')} while payment is {payload.get('payment_status')}"
        )
    return f"Booking {number} updated ({event_type})"


def build_message(event_type: str, payload: Dict[str, Any], idempotency_key: str) -> NotificationMessage:
    """Render an outbox payload into the message handed to the collaborator."""
    body = _describe(event_type, payload)
    return NotificationMessage(
        event_type=event_type,
        booking_id=str(payload.get("booking_id") or ""),
        subject=body.split(":")[0],
        body=body,
        idempotency_key=idempotency_key,
    )


class LoggingNotificationDispatcher:
    """
    Default dispatcher: writes the message to the log.

    ``sender`` lets deployments plug in a real transport without touching the
    delivery task; it should raise NotificationDeliveryError on transient
    failure.
    """

    def __init__(self, sender: Optional[Callable[[NotificationMessage], None]] = None):
        self._sender = sender

    def send(self, message: NotificationMessage) -> None:
        if self._sender is not None:
            self._sender(message)
        logger.info(
            "Notification %s for booking %s: %s",
            message.event_type,
            message.booking_id,
            message.body,
            extra={"idempotency_key": message.idempotency_key},
        )


_dispatcher: NotificationDispatcher = LoggingNotificationDispatcher()


def get_notification_dispatcher() -> NotificationDispatcher:
    return _dispatcher


def set_notification_dispatcher(dispatcher: NotificationDispatcher) -> None:
    global _dispatcher
    _dispatcher = dispatcher
