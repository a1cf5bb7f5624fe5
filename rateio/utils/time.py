"""Time utilities (BRT)."""

from datetime import date, datetime, timezone, tzinfo
from zoneinfo import ZoneInfo

from rateio.config import settings

BRT = ZoneInfo(settings.TIMEZONE)


def now_brt_naive() -> datetime:
    """
    Current time in BRT, returned as naive datetime for DB storage.
    """
    return datetime.now(BRT).replace(tzinfo=None)


def today_brt() -> date:
    return datetime.now(BRT).date()


def to_brt(dt: datetime, naive_assumed_tz: tzinfo = timezone.utc) -> datetime:
    """Convert datetime to BRT timezone-aware value."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=naive_assumed_tz)
    return dt.astimezone(BRT)


def to_brt_iso_db(dt: datetime) -> str:
    """
    Convert datetime to BRT ISO string.

    DB timestamps in this app are stored as naive BRT, so naive values are
    interpreted as BRT (not UTC) here.
    """
    return to_brt(dt, naive_assumed_tz=BRT).isoformat()


def month_label(value: date) -> str:
    """Period label used by the history search, e.g. 06/2025"""
    return f"{value.month:02d}/{value.year}"
