"""Day boundaries in the reference timezone."""

from datetime import date, datetime, timezone

from steprewards.clock import day_start, reference_today, reference_yesterday


class TestReferenceDay:
    def test_evening_utc_is_same_day_in_new_york(self):
        assert reference_today(datetime(2026, 3, 10, 17, 0, tzinfo=timezone.utc)) == date(2026, 3, 10)

    def test_early_utc_is_previous_day_in_new_york(self):
        assert reference_today(datetime(2026, 3, 10, 3, 0, tzinfo=timezone.utc)) == date(2026, 3, 9)

    def test_yesterday(self):
        assert reference_yesterday(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)) == date(2026, 2, 28)

    def test_day_start_standard_time(self):
        assert day_start(date(2026, 1, 15)) == datetime(2026, 1, 15, 5, 0, tzinfo=timezone.utc)

    def test_day_start_daylight_time(self):
        assert day_start(date(2026, 7, 4)) == datetime(2026, 7, 4, 4, 0, tzinfo=timezone.utc)
