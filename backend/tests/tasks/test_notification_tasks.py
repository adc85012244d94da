import pytest

from salon_engine.core.enums import PaymentStatus
from salon_engine.models.event_outbox import EventOutbox, EventOutboxStatus
from salon_engine.repositories.event_outbox_repository import EventOutboxRepository
from salon_engine.services.notification_dispatcher import (
    LoggingNotificationDispatcher,
    NotificationDeliveryError,
    build_message,
    get_notification_dispatcher,
    set_notification_dispatcher,
)
from salon_engine.services.payment_reconciliation_service import PaymentReconciliationService
from salon_engine.tasks import notification_tasks
from salon_engine.tasks.notification_tasks import (
    BACKOFF_SECONDS,
    _next_backoff,
    deliver_event,
    deliver_outbox_event,
    dispatch_pending,
)
from tests.helpers import charge_success


class RecordingDispatcher:
    def __init__(self, fail_with=None):
        self.sent = []
        self.fail_with = fail_with

    def send(self, message):
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(message)


@pytest.fixture
def outbox_event(db):
    def _make(event_type="booking.payment_updated", key="PSK-1", **payload):
        payload.setdefault("booking_id", "booking-1")
        payload.setdefault("booking_number", "BK-0001")
        row = EventOutboxRepository(db).enqueue(
            event_type=event_type,
            booking_id=payload["booking_id"],
            payload=payload,
            dedup_key=f"{event_type}:{key}",
        )
        db.commit()
        return row

    return _make


@pytest.fixture
def installed_dispatcher():
    previous = get_notification_dispatcher()
    yield set_notification_dispatcher
    set_notification_dispatcher(previous)


def _reload(db, event_id):
    db.expire_all()
    return db.get(EventOutbox, event_id)


def test_backoff_schedule_is_capped():
    assert _next_backoff(1) == BACKOFF_SECONDS[0]
    assert _next_backoff(3) == BACKOFF_SECONDS[2]
    assert _next_backoff(50) == BACKOFF_SECONDS[-1]


def test_successful_delivery_marks_sent(db, outbox_event):
    dispatcher = RecordingDispatcher()
    event = outbox_event(payment_status="completed", auto_advanced=True)

    outcome = deliver_outbox_event(db, event.id, dispatcher=dispatcher)

    assert outcome.status == EventOutboxStatus.SENT.value
    assert outcome.attempt_count == 1
    assert len(dispatcher.sent) == 1
    message = dispatcher.sent[0]
    assert message.booking_id == "booking-1"
    assert message.idempotency_key == "booking.payment_updated:PSK-1"
    assert "service has started" in message.body
    assert _reload(db, event.id).status == EventOutboxStatus.SENT.value


def test_sent_event_is_not_delivered_twice(db, outbox_event):
    dispatcher = RecordingDispatcher()
    event = outbox_event()
    deliver_outbox_event(db, event.id, dispatcher=dispatcher)

    outcome = deliver_outbox_event(db, event.id, dispatcher=dispatcher)

    assert outcome.status == EventOutboxStatus.SENT.value
    assert len(dispatcher.sent) == 1


def test_failure_schedules_retry(db, outbox_event):
    event = outbox_event()
    dispatcher = RecordingDispatcher(fail_with=NotificationDeliveryError("smtp down"))

    outcome = deliver_outbox_event(db, event.id, dispatcher=dispatcher, max_attempts=3)

    assert outcome.status == EventOutboxStatus.PENDING.value
    assert outcome.retry_in == BACKOFF_SECONDS[0]
    assert outcome.error == "smtp down"
    row = _reload(db, event.id)
    assert row.attempt_count == 1
    assert row.last_error == "smtp down"


def test_failure_on_last_attempt_is_terminal(db, outbox_event):
    event = outbox_event()
    dispatcher = RecordingDispatcher(fail_with=NotificationDeliveryError("bounced"))

    for _ in range(2):
        deliver_outbox_event(db, event.id, dispatcher=dispatcher, max_attempts=2)

    row = _reload(db, event.id)
    assert row.status == EventOutboxStatus.FAILED.value
    assert row.attempt_count == 2


def test_missing_event_is_skipped(db):
    assert deliver_outbox_event(db, "no-such-event", dispatcher=RecordingDispatcher()) is None


def test_dispatch_pending_enqueues_each_event(db, outbox_event, monkeypatch):
    first, second = outbox_event(key="a"), outbox_event(key="b")
    scheduled = []
    monkeypatch.setattr(
        notification_tasks.deliver_event,
        "apply_async",
        lambda args, **kwargs: scheduled.append(args[0]),
    )

    assert dispatch_pending() == 2
    assert sorted(scheduled) == sorted([first.id, second.id])


def test_deliver_event_task(db, outbox_event, installed_dispatcher):
    dispatcher = RecordingDispatcher()
    installed_dispatcher(dispatcher)
    event = outbox_event()

    assert deliver_event(event.id) == EventOutboxStatus.SENT.value
    assert len(dispatcher.sent) == 1


def test_deliver_event_task_leaves_failure_to_the_outbox_schedule(
    db, outbox_event, installed_dispatcher, monkeypatch
):
    installed_dispatcher(RecordingDispatcher(fail_with=NotificationDeliveryError("timeout")))
    event = outbox_event()
    redelivered = []
    monkeypatch.setattr(
        notification_tasks.deliver_event,
        "apply_async",
        lambda args, **kwargs: redelivered.append(args[0]),
    )

    assert deliver_event(event.id) == EventOutboxStatus.PENDING.value

    row = _reload(db, event.id)
    assert row.attempt_count == 1
    assert row.next_attempt_at is not None
    assert redelivered == []
    # not due until the backoff elapses
    assert EventOutboxRepository(db).due() == []


def test_state_is_untouched_by_delivery_failure(db, make_booking):
    booking = make_booking()
    PaymentReconciliationService(db).handle_gateway_webhook(charge_success("PSK-9", booking.id))
    [event] = [
        e for e in EventOutboxRepository(db).list_for_booking(booking.id)
        if e.event_type == "booking.payment_updated"
    ]

    failing = RecordingDispatcher(fail_with=NotificationDeliveryError("whatsapp offline"))
    deliver_outbox_event(db, event.id, dispatcher=failing)

    db.refresh(booking)
    assert booking.payment_status == PaymentStatus.COMPLETED.value


def test_build_message_covers_known_events():
    assigned = build_message(
        "booking.workers_assigned", {"booking_number": "BK-1", "worker_ids": ["w1", "w2"]}, "k"
    )
    cancelled = build_message("booking.cancelled", {"booking_number": "BK-1", "reason": "rain"}, "k")
    unknown = build_message("booking.other", {"booking_id": "b1"}, "k")

    assert assigned.body == "Booking BK-1 assigned to w1, w2"
    assert cancelled.body == "Booking BK-1 was cancelled: rain"
    assert cancelled.subject == "Booking BK-1 was cancelled"
    assert "booking.other" in unknown.body


def test_logging_dispatcher_forwards_to_sender():
    received = []
    LoggingNotificationDispatcher(sender=received.append).send(
        build_message("booking.cancelled", {"booking_number": "BK-1"}, "k")
    )
    assert len(received) == 1
