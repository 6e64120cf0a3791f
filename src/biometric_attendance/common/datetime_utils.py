from __future__ import annotations

from datetime import date, datetime, timedelta, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo


def parse_iso_date(value: str) -> date:
    """Parse YYYY-MM-DD string into date."""
    return datetime.strptime(value, "%Y-%m-%d").date()


def resolve_timezone(name: Optional[str]) -> Optional[tzinfo]:
    """IANA name -> tzinfo. Empty means server-local time."""
    if not name:
        return None
    return ZoneInfo(name)


def to_canonical(moment: datetime, tz: Optional[tzinfo] = None) -> datetime:
    """Naive wall-clock time in the canonical attendance timezone.

    Naive inputs are taken as already canonical. Aware inputs are converted
    to ``tz`` (or to server-local time when ``tz`` is None).
    """
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(tz).replace(tzinfo=None)


def now_local(tz: Optional[tzinfo] = None) -> datetime:
    """Current canonical wall-clock time.

    Note: Wrapped so tests can patch/mocked easier.
    """
    if tz is None:
        return datetime.now()
    return datetime.now(tz).replace(tzinfo=None)


def work_day(moment: datetime, tz: Optional[tzinfo] = None) -> date:
    """Calendar day of ``moment`` truncated to midnight in the canonical timezone."""
    return to_canonical(moment, tz).date()


def format_duration(value: timedelta) -> str:
    total_minutes = int(value.total_seconds()) // 60
    return f"{total_minutes // 60}h {total_minutes % 60}m"
