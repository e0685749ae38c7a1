from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from dailyq.shared.clock import (
    calculate_timeliness,
    is_within_window,
    local_today,
    seconds_until_next_midnight,
)

TOKYO = ZoneInfo("Asia/Tokyo")
PUBLISHED = datetime(2024, 5, 1, 1, 0, tzinfo=timezone.utc)  # 10:00 JST


class TestCalculateTimeliness:
    @pytest.mark.parametrize(
        "offset, expected",
        [
            (timedelta(0), (True, 0)),
            (timedelta(minutes=5), (True, 0)),
            (timedelta(minutes=30), (True, 0)),
            (timedelta(minutes=30, seconds=1), (False, 0)),
            (timedelta(minutes=30, seconds=59), (False, 0)),
            (timedelta(minutes=31), (False, 1)),
            (timedelta(hours=2, minutes=15), (False, 105)),
            (timedelta(minutes=-3), (True, 0)),
        ],
    )
    def test_classification(self, offset, expected):
        assert tuple(calculate_timeliness(PUBLISHED, PUBLISHED + offset)) == expected

    def test_missing_publication_counts_as_on_time(self):
        assert tuple(calculate_timeliness(None, PUBLISHED)) == (True, 0)

    def test_late_by_seconds_is_late_with_zero_minutes(self):
        result = calculate_timeliness(PUBLISHED, PUBLISHED + timedelta(minutes=30, microseconds=1))

        assert result.is_on_time is False
        assert result.late_minutes == 0

    def test_custom_window(self):
        result = calculate_timeliness(PUBLISHED, PUBLISHED + timedelta(minutes=12), on_time_minutes=10)
        assert result.is_on_time is False
        assert result.late_minutes == 2

    def test_lateness_is_monotonic(self):
        previous = calculate_timeliness(PUBLISHED, PUBLISHED)
        for seconds in range(0, 4 * 3600, 37):
            current = calculate_timeliness(PUBLISHED, PUBLISHED + timedelta(seconds=seconds))
            assert current.late_minutes >= previous.late_minutes
            assert current.is_on_time == (seconds <= 30 * 60)
            previous = current


class TestCalendar:
    def test_local_today_rolls_over_at_home_midnight(self):
        assert local_today(TOKYO, datetime(2024, 4, 30, 14, 59, tzinfo=timezone.utc)) == date(2024, 4, 30)
        assert local_today(TOKYO, datetime(2024, 4, 30, 15, 0, tzinfo=timezone.utc)) == date(2024, 5, 1)

    def test_window_is_inclusive_at_both_ends(self):
        start, end = time(10, 0), time(21, 0)

        assert is_within_window(time(10, 0), start, end)
        assert is_within_window(time(21, 0, 30), start, end)
        assert not is_within_window(time(9, 59), start, end)
        assert not is_within_window(time(21, 1), start, end)

    def test_seconds_until_next_midnight(self):
        now = datetime(2024, 5, 1, 23, 30, tzinfo=TOKYO)
        assert seconds_until_next_midnight(TOKYO, now) == 30 * 60
