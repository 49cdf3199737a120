"""Tests for time helpers."""

from datetime import datetime, timedelta, timezone

from utils.timeutils import add_seconds, business_date, from_db, seconds_until, to_db


class TestTimeUtils:
    def test_round_trip_keeps_utc(self):
        value = datetime(2024, 3, 1, 12, 30, 15, 250000, tzinfo=timezone.utc)
        assert from_db(to_db(value)) == value

    def test_naive_values_are_treated_as_utc(self):
        naive = datetime(2024, 3, 1, 12, 0)
        assert to_db(naive) == "2024-03-01T12:00:00+00:00"
        assert from_db("2024-03-01T12:00:00").tzinfo == timezone.utc

    def test_none_passes_through(self):
        assert to_db(None) is None
        assert from_db(None) is None
        assert from_db("") is None

    def test_business_date_uses_shanghai_day(self):
        # 17:00 UTC is already the next day in UTC+8
        assert business_date(datetime(2024, 3, 1, 17, 0, tzinfo=timezone.utc)) == "2024-03-02"
        assert business_date(datetime(2024, 3, 1, 15, 59, tzinfo=timezone.utc)) == "2024-03-01"

    def test_seconds_until_future(self):
        now = datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert seconds_until(now + timedelta(seconds=5), now) == 5.0

    def test_seconds_until_past_is_zero(self):
        now = datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert seconds_until(now - timedelta(seconds=5), now) == 0.0

    def test_add_seconds(self):
        now = datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert add_seconds(now, 1.5) == now + timedelta(seconds=1.5)
