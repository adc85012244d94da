from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
import random
from typing import Optional

import pytest

from salon_engine.services.queue_service import (
    PAYMENT_QUEUE,
    SERVICE_QUEUE,
    compute_payment_queue,
    compute_queue,
    compute_queue_stats,
    compute_service_queue,
    is_walk_in,
)

# 10:00 in Lagos
T0 = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)
TODAY = date(2026, 3, 10)


@dataclass
class FakeBooking:
    id: str
    scheduled_at: datetime
    customer_type: str = "pre_booked"
    customer_id: Optional[str] = "customer-1"
    payment_status: str = "pending"
    status: str = "scheduled"
    duration_minutes: int = 30
    customer_name: Optional[str] = None
    booking_number: str = ""

    def __post_init__(self):
        self.booking_number = self.booking_number or f"BK-{self.id}"


def _m(minutes: int) -> datetime:
    return T0 + timedelta(minutes=minutes)


def _ids(entries):
    return [e.booking_id for e in entries]


@pytest.fixture
def mixed_day():
    """Three unpaid walk-ins and two paid pre-booked customers scheduled earlier."""
    return [
        FakeBooking("walk-a", _m(60), customer_type="walk_in", customer_id=None),
        FakeBooking("walk-b", _m(30), customer_type="walk_in", customer_id=None),
        FakeBooking("walk-c", _m(90), customer_type="walk_in", customer_id=None),
        FakeBooking("pre-a", _m(-60), payment_status="completed"),
        FakeBooking("pre-b", _m(-30), payment_status="completed"),
    ]


class TestServiceQueue:
    def test_unpaid_walk_ins_rank_ahead_of_paid_pre_booked(self, mixed_day):
        entries = compute_service_queue(mixed_day, TODAY, now=T0)

        assert _ids(entries) == ["walk-b", "walk-a", "walk-c", "pre-a", "pre-b"]
        assert [e.rank for e in entries] == [1, 2, 3, 4, 5]

    def test_walk_in_before_pre_booked_within_same_payment_group(self):
        bookings = [
            FakeBooking("pre", _m(0)),
            FakeBooking("walk", _m(45), customer_type="walk_in"),
        ]
        assert _ids(compute_service_queue(bookings, TODAY, now=T0)) == ["walk", "pre"]

    def test_failed_and_refunded_count_as_unpaid(self):
        bookings = [
            FakeBooking("paid", _m(0), payment_status="completed"),
            FakeBooking("failed", _m(30), payment_status="failed"),
            FakeBooking("refunded", _m(60), payment_status="refunded"),
        ]
        assert _ids(compute_service_queue(bookings, TODAY, now=T0)) == ["failed", "refunded", "paid"]

    def test_identifier_breaks_exact_ties(self):
        bookings = [FakeBooking("b2", _m(0)), FakeBooking("b1", _m(0)), FakeBooking("b3", _m(0))]
        assert _ids(compute_service_queue(bookings, TODAY, now=T0)) == ["b1", "b2", "b3"]


class TestPaymentQueue:
    def test_paid_bookings_lead(self, mixed_day):
        entries = compute_payment_queue(mixed_day, TODAY, now=T0)
        assert _ids(entries) == ["pre-a", "pre-b", "walk-b", "walk-a", "walk-c"]

    def test_orderings_differ_on_same_input(self, mixed_day):
        service = _ids(compute_queue(mixed_day, TODAY, SERVICE_QUEUE, now=T0))
        payment = _ids(compute_queue(mixed_day, TODAY, PAYMENT_QUEUE, now=T0))
        assert service != payment


def test_output_is_independent_of_input_order(mixed_day):
    expected = _ids(compute_service_queue(mixed_day, TODAY, now=T0))
    rng = random.Random(7)
    for _ in range(20):
        shuffled = list(mixed_day)
        rng.shuffle(shuffled)
        assert _ids(compute_service_queue(shuffled, TODAY, now=T0)) == expected


def test_filters_closed_bookings_and_other_days():
    bookings = [
        FakeBooking("active", _m(0)),
        FakeBooking("in-chair", _m(15), status="in_progress"),
        FakeBooking("done", _m(0), status="completed"),
        FakeBooking("gone", _m(0), status="cancelled"),
        FakeBooking("tomorrow", _m(24 * 60)),
        # 23:30 UTC is already the next day in Lagos
        FakeBooking("late-utc", datetime(2026, 3, 10, 23, 30, tzinfo=timezone.utc)),
    ]
    assert _ids(compute_service_queue(bookings, TODAY, now=T0)) == ["active", "in-chair"]


def test_unknown_ordering_is_rejected():
    with pytest.raises(ValueError):
        compute_queue([], TODAY, "vip_queue")


def test_empty_input_yields_empty_queue():
    assert compute_service_queue([], TODAY, now=T0) == []


class TestEntryDetails:
    def test_wait_accumulates_durations_ahead(self):
        bookings = [
            FakeBooking("first", _m(0), duration_minutes=45),
            FakeBooking("second", _m(10), duration_minutes=30),
            FakeBooking("third", _m(20), duration_minutes=60),
        ]
        entries = compute_service_queue(bookings, TODAY, now=T0)
        assert [e.estimated_wait_minutes for e in entries] == [0, 45, 75]

    def test_timing_flags(self):
        bookings = [
            FakeBooking("soon", _m(10)),
            FakeBooking("late", _m(-45)),
            FakeBooking("later", _m(120)),
            FakeBooking("just-missed", _m(-20)),
        ]
        by_id = {e.booking_id: e for e in compute_service_queue(bookings, TODAY, now=T0)}

        assert by_id["soon"].is_upcoming and not by_id["soon"].is_overdue
        assert by_id["late"].is_overdue and not by_id["late"].is_upcoming
        assert not by_id["later"].is_upcoming and not by_id["later"].is_overdue
        assert by_id["just-missed"].is_upcoming
        assert by_id["soon"].minutes_until_scheduled == 10
        assert by_id["late"].minutes_until_scheduled == -45

    def test_naive_datetimes_are_read_as_utc(self):
        entries = compute_service_queue([FakeBooking("naive", datetime(2026, 3, 10, 9, 30))], TODAY, now=T0)
        assert entries[0].minutes_until_scheduled == 30
        assert entries[0].scheduled_at.tzinfo is not None

    def test_to_dict_serializes_schedule(self):
        entry = compute_service_queue([FakeBooking("one", _m(0))], TODAY, now=T0)[0]
        data = entry.to_dict()
        assert data["scheduled_at"] == "2026-03-10T09:00:00+00:00"
        assert data["booking_reference"] == "BK-one"
        assert data["rank"] == 1


def test_walk_in_detection():
    assert is_walk_in(FakeBooking("a", T0, customer_type="walk_in"))
    assert is_walk_in(FakeBooking("b", T0, customer_id=None))
    assert not is_walk_in(FakeBooking("c", T0))


def test_stats_count_by_state():
    bookings = [
        FakeBooking("ready", _m(0), payment_status="completed"),
        FakeBooking("unpaid", _m(0)),
        FakeBooking("failed", _m(0), payment_status="failed"),
        FakeBooking("chair", _m(0), status="in_progress", payment_status="completed"),
        FakeBooking("done", _m(0), status="completed", payment_status="completed"),
        FakeBooking("cancelled", _m(0), status="cancelled"),
        FakeBooking("other-day", _m(-24 * 60)),
    ]
    assert compute_queue_stats(bookings, TODAY) == {
        "total": 5,
        "ready_for_service": 1,
        "payment_pending": 2,
        "in_progress": 1,
        "completed_today": 1,
    }
