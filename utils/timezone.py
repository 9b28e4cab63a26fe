"""
New York time helpers.

Market-hours rules and check-in calendar days are evaluated in
America/New_York regardless of where the request originates.
"""

from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

NY_TZ = ZoneInfo("America/New_York")

MARKET_OPEN_MINUTE = 9 * 60 + 30
MARKET_CLOSE_MINUTE = 16 * 60


def to_ny(moment: datetime) -> datetime:
    """Convert a datetime to New York time. Naive values are treated as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(NY_TZ)


def ny_minutes_since_midnight(moment: datetime) -> int:
    local = to_ny(moment)
    return local.hour * 60 + local.minute


def is_ny_market_open(moment: datetime) -> bool:
    """Regular session check: weekdays, 09:30 through 16:00 inclusive."""
    local = to_ny(moment)
    if local.weekday() >= 5:
        return False
    minutes = local.hour * 60 + local.minute
    return MARKET_OPEN_MINUTE <= minutes <= MARKET_CLOSE_MINUTE


def is_opening_or_closing_window(moment: datetime) -> bool:
    """True inside [09:30, 09:45) or [15:45, 16:00] New York time."""
    minutes = ny_minutes_since_midnight(moment)
    first15 = MARKET_OPEN_MINUTE <= minutes < MARKET_OPEN_MINUTE + 15
    last15 = MARKET_CLOSE_MINUTE - 15 <= minutes <= MARKET_CLOSE_MINUTE
    return first15 or last15


def format_ny_time(moment: datetime) -> str:
    return to_ny(moment).strftime("%H:%M")


def today_ny(now: Optional[datetime] = None) -> date:
    """Calendar date in New York for ``now`` (defaults to the current instant)."""
    return to_ny(now or datetime.now(timezone.utc)).date()


def days_between(earlier: date, later: date) -> int:
    return (later - earlier).days
