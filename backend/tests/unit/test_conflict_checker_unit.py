from datetime import datetime, timedelta, timezone

import pytest
import pytz

from salon_engine.core.exceptions import ValidationException
from salon_engine.services.conflict_checker import (
    Conflict,
    ConflictChecker,
    dedupe_ids,
    intervals_overlap,
)

T0 = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


def _m(minutes: int) -> datetime:
    return T0 + timedelta(minutes=minutes)


class TestIntervalsOverlap:
    def test_touching_intervals_do_not_overlap(self):
        assert intervals_overlap(_m(0), _m(60), _m(60), _m(120)) is False
        assert intervals_overlap(_m(60), _m(120), _m(0), _m(60)) is False

    def test_one_minute_overlap_is_detected(self):
        assert intervals_overlap(_m(0), _m(60), _m(59), _m(120)) is True

    def test_containment_overlaps(self):
        assert intervals_overlap(_m(0), _m(120), _m(30), _m(45)) is True

    def test_naive_values_are_treated_as_utc(self):
        naive_start = datetime(2026, 3, 10, 9, 30)
        assert intervals_overlap(_m(0), _m(60), naive_start, naive_start + timedelta(minutes=10))

    def test_different_offsets_compare_on_the_same_instant(self):
        lagos = pytz.timezone("Africa/Lagos")
        # 10:00 Lagos is 09:00 UTC
        local_start = lagos.localize(datetime(2026, 3, 10, 10, 0))
        assert intervals_overlap(_m(0), _m(60), local_start, local_start + timedelta(minutes=30))
        assert not intervals_overlap(_m(-60), _m(0), local_start, local_start + timedelta(minutes=30))


def test_dedupe_ids_keeps_first_seen_order():
    assert dedupe_ids(["w2", "w1", "w2", "w3", "w1"]) == ["w2", "w1", "w3"]


class TestValidateInterval:
    def test_rejects_inverted_interval(self):
        with pytest.raises(ValidationException) as exc_info:
            ConflictChecker.validate_interval(_m(60), _m(0))
        assert exc_info.value.code == "INVALID_INTERVAL"

    def test_rejects_empty_interval(self):
        with pytest.raises(ValidationException):
            ConflictChecker.validate_interval(_m(0), _m(0))

    def test_normalizes_to_utc(self):
        start, end = ConflictChecker.validate_interval(datetime(2026, 3, 10, 9, 0), _m(30))
        assert start.tzinfo is not None
        assert start == T0
        assert end == _m(30)


def test_conflict_to_dict_names_booking_and_interval():
    conflict = Conflict(
        worker_id="w1",
        conflicting_booking_id="b1",
        conflicting_booking_reference="BK-0001",
        conflicting_start=_m(0),
        conflicting_end=_m(60),
    )
    assert conflict.to_dict() == {
        "worker_id": "w1",
        "conflicting_booking_id": "b1",
        "conflicting_booking_reference": "BK-0001",
        "conflicting_interval": {
            "start": "2026-03-10T09:00:00+00:00",
            "end": "2026-03-10T10:00:00+00:00",
        },
    }
