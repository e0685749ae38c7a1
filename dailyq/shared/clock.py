"""Calendar helpers anchored to the service's home timezone."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import NamedTuple, Optional
from zoneinfo import ZoneInfo


class Timeliness(NamedTuple):
    is_on_time: bool
    late_minutes: int


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def local_now(tz: ZoneInfo, now: Optional[datetime] = None) -> datetime:
    """Return ``now`` (default: current time) expressed in ``tz``."""
    if now is None:
        now = utcnow()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(tz)


def local_today(tz: ZoneInfo, now: Optional[datetime] = None) -> date:
    return local_now(tz, now).date()


def minutes_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


def is_within_window(moment: time, start: time, end: time) -> bool:
    """Whether ``moment`` falls in ``[start, end]`` at minute granularity."""
    return minutes_of_day(start) <= minutes_of_day(moment) <= minutes_of_day(end)


def seconds_until_next_midnight(tz: ZoneInfo, now: Optional[datetime] = None) -> float:
    current = local_now(tz, now)
    tomorrow = datetime.combine(current.date() + timedelta(days=1), time(0, 0), tzinfo=tz)
    return max((tomorrow - current).total_seconds(), 0.0)


def calculate_timeliness(
    published_at: Optional[datetime],
    created_at: datetime,
    on_time_minutes: int = 30,
) -> Timeliness:
    """Classify an answer against the moment its question went live.

    An answer is on time when the exact gap since publication is at most
    ``on_time_minutes``. A late answer records the overflow beyond the
    window, floored to whole minutes. A missing publication timestamp
    counts as on time.
    """
    if published_at is None:
        return Timeliness(True, 0)

    gap = created_at - published_at
    window = timedelta(minutes=on_time_minutes)

    if gap <= window:
        return Timeliness(True, 0)

    return Timeliness(False, int((gap - window).total_seconds() // 60))
