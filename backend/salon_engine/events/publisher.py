"""Event publisher - writes booking facts to the transactional outbox."""
from datetime import datetime
import logging
from typing import Any, Dict, Protocol

from ..models.event_outbox import EventOutbox
from ..repositories.event_outbox_repository import EventOutboxRepository

logger = logging.getLogger(__name__)


class Event(Protocol):
    """Protocol for event types."""

    event_type: str
    booking_id: str

    def to_dict(self) -> Dict[str, Any]:
        ...


def _json_ready(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, list):
        return [_json_ready(v) for v in value]
    if isinstance(value, dict):
        return {k: _json_ready(v) for k, v in value.items()}
    return value


class EventPublisher:
    """
    Publishes domain events to the outbox for async delivery.

    Publishing never commits; the row becomes visible together with the
    state change that produced it, or not at all.
    """

    def __init__(self, outbox_repository: EventOutboxRepository):
        self.outbox_repo = outbox_repository

    def publish(self, event: Event, dedup_key: str) -> EventOutbox:
        """
        Queue an event for background delivery.

        ``dedup_key`` is deterministic (payment reference, assignment id)
        so replays of the same change collapse onto one outbox row.
        """
        payload = _json_ready(event.to_dict())
        payload["event_type"] = event.event_type
        row = self.outbox_repo.enqueue(
            event_type=event.event_type,
            booking_id=event.booking_id,
            payload=payload,
            dedup_key=f"{event.event_type}:{dedup_key}",
        )
        logger.debug("Queued %s for booking %s", event.event_type, event.booking_id)
        return row
