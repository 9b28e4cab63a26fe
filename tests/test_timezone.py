from datetime import date, datetime, timezone

import pytest

from utils.timezone import (
    NY_TZ,
    days_between,
    format_ny_time,
    is_ny_market_open,
    is_opening_or_closing_window,
    to_ny,
    today_ny,
)


def test_naive_datetimes_are_treated_as_utc():
    assert to_ny(datetime(2025, 1, 15, 14, 30)).hour == 9


def test_dst_shift():
    winter = datetime(2025, 1, 15, 14, 30, tzinfo=timezone.utc)
    summer = datetime(2025, 7, 15, 14, 30, tzinfo=timezone.utc)
    assert format_ny_time(winter) == "09:30"
    assert format_ny_time(summer) == "10:30"


@pytest.mark.parametrize("local,expected", [
    (datetime(2025, 3, 12, 9, 29, tzinfo=NY_TZ), False),
    (datetime(2025, 3, 12, 9, 30, tzinfo=NY_TZ), True),
    (datetime(2025, 3, 12, 16, 0, tzinfo=NY_TZ), True),
    (datetime(2025, 3, 12, 16, 1, tzinfo=NY_TZ), False),
    (datetime(2025, 3, 16, 12, 0, tzinfo=NY_TZ), False),  # Sunday
])
def test_market_open(local, expected):
    assert is_ny_market_open(local) is expected


def test_window_is_not_weekday_aware():
    assert is_opening_or_closing_window(datetime(2025, 3, 15, 9, 35, tzinfo=NY_TZ))


def test_today_ny_crosses_midnight_before_utc():
    # 02:00 UTC is still the previous evening in New York
    assert today_ny(datetime(2025, 3, 13, 2, 0, tzinfo=timezone.utc)) == date(2025, 3, 12)


def test_days_between():
    assert days_between(date(2025, 2, 28), date(2025, 3, 1)) == 1
    assert days_between(date(2025, 3, 1), date(2025, 3, 1)) == 0
