"""Tests for interval boundary arithmetic."""

from datetime import datetime, timedelta, timezone

import pytest

from aggregation.intervals import (
    ONE_HOUR,
    ONE_MINUTE,
    TEN_MINUTES,
    Level,
    ensure_utc,
    floor_to_interval,
    is_complete,
    next_boundary_delay,
)

UTC = timezone.utc


class TestFloorToInterval:
    def test_one_minute_drops_seconds(self):
        t = datetime(2025, 1, 1, 12, 34, 56, 789000, tzinfo=UTC)
        assert floor_to_interval(t, ONE_MINUTE) == datetime(2025, 1, 1, 12, 34, tzinfo=UTC)

    def test_ten_minutes_floors_minute_to_multiple_of_ten(self):
        t = datetime(2025, 1, 1, 12, 39, 59, tzinfo=UTC)
        assert floor_to_interval(t, TEN_MINUTES) == datetime(2025, 1, 1, 12, 30, tzinfo=UTC)

    def test_hour(self):
        t = datetime(2025, 1, 1, 23, 59, 59, tzinfo=UTC)
        assert floor_to_interval(t, ONE_HOUR) == datetime(2025, 1, 1, 23, tzinfo=UTC)

    def test_exact_boundary_is_unchanged(self):
        t = datetime(2025, 1, 1, 12, 40, tzinfo=UTC)
        assert floor_to_interval(t, TEN_MINUTES) == t

    @pytest.mark.parametrize("minute", range(0, 60, 7))
    def test_ten_minute_alignment_property(self, minute):
        t = datetime(2025, 6, 30, 5, minute, 13, tzinfo=UTC)
        start = floor_to_interval(t, TEN_MINUTES)
        assert start.minute % 10 == 0
        assert start.second == 0 and start.microsecond == 0
        assert start <= t

    def test_timezone_independent(self):
        # 12:37 at UTC+05:30 is 07:07 UTC; a local-time floor would give 12:30
        local = datetime(2025, 1, 1, 12, 37, tzinfo=timezone(timedelta(hours=5, minutes=30)))
        assert floor_to_interval(local, TEN_MINUTES) == datetime(2025, 1, 1, 7, 0, tzinfo=UTC)

    def test_naive_is_treated_as_utc(self):
        naive = datetime(2025, 1, 1, 12, 37, 5)
        assert floor_to_interval(naive, ONE_MINUTE) == datetime(2025, 1, 1, 12, 37, tzinfo=UTC)

    def test_rejects_non_positive_width(self):
        with pytest.raises(ValueError):
            floor_to_interval(datetime(2025, 1, 1, tzinfo=UTC), timedelta(0))


class TestNextBoundaryDelay:
    def test_mid_interval(self):
        now = datetime(2025, 1, 1, 12, 34, 15, tzinfo=UTC)
        assert next_boundary_delay(now, ONE_MINUTE) == timedelta(seconds=45)
        assert next_boundary_delay(now, TEN_MINUTES) == timedelta(minutes=5, seconds=45)

    def test_on_boundary_waits_full_width(self):
        now = datetime(2025, 1, 1, 13, 0, tzinfo=UTC)
        assert next_boundary_delay(now, ONE_HOUR) == ONE_HOUR


class TestCompletenessAndConversion:
    def test_is_complete_at_end(self):
        start = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)
        assert not is_complete(start, TEN_MINUTES, start + timedelta(minutes=9, seconds=59))
        assert is_complete(start, TEN_MINUTES, start + TEN_MINUTES)

    def test_ensure_utc_converts_aware(self):
        t = datetime(2025, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        assert ensure_utc(t) == datetime(2025, 1, 1, 12, 0, tzinfo=UTC)
        assert ensure_utc(t).tzinfo == UTC


class TestLevel:
    def test_hierarchy(self):
        assert Level.TEN_MINUTES.child is Level.ONE_MINUTE
        assert Level.HOURLY.child is Level.TEN_MINUTES
        assert Level.ONE_MINUTE.child is None

    def test_expected_children(self):
        assert Level.TEN_MINUTES.expected_children == 10
        assert Level.HOURLY.expected_children == 6

    def test_data_types(self):
        assert Level.ONE_MINUTE.data_type == "wind_1min"
        assert Level.TEN_MINUTES.data_type == "wind_10min"
        assert Level.HOURLY.permanent
        assert not Level.TEN_MINUTES.permanent
