"""
Scoring week window.
Pure date arithmetic in the scoring time zone; no I/O.
"""

from datetime import datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from .config import SCORING_TIME_ZONE
from .models import RunMode, WeekWindow


def _localize(now: datetime, tz_name: str) -> datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(tz_name))


def get_week_window(now: datetime, tz_name: str = SCORING_TIME_ZONE) -> WeekWindow:
    """
    Monday 00:00:00 through Sunday 23:59:59 of the week containing `now`.

    Naive datetimes are read as UTC. The returned bounds carry the
    scoring zone, so DST weeks keep local wall-clock boundaries.
    """
    zone = ZoneInfo(tz_name)
    local = _localize(now, tz_name)
    monday = local.date() - timedelta(days=local.weekday())
    sunday = monday + timedelta(days=6)
    return WeekWindow(
        start=datetime.combine(monday, time(0, 0, 0), tzinfo=zone),
        end=datetime.combine(sunday, time(23, 59, 59), tzinfo=zone),
    )


def get_run_window(
    mode: RunMode,
    now: datetime,
    tz_name: str = SCORING_TIME_ZONE
) -> WeekWindow:
    """Window scored by a run in the given mode."""
    if mode == RunMode.THURSDAY_NEXT_WEEK:
        return get_week_window(now + timedelta(days=7), tz_name)
    return get_week_window(now, tz_name)


def make_run_key(now: datetime, tz_name: str = SCORING_TIME_ZONE, prefix: str = "run") -> str:
    """Run identifier from local wall-clock time, e.g. run_2026-07-13_091500."""
    local = _localize(now, tz_name)
    return f"{prefix}_{local:%Y-%m-%d_%H%M%S}"


def utc_now(now: Optional[datetime] = None) -> datetime:
    """Timezone-aware UTC timestamp."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)
