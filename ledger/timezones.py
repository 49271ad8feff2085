from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ledger.settings import get_settings

logger = logging.getLogger("ledger.timezones")

DEFAULT_TIMEZONE = "Europe/Madrid"


@lru_cache
def attendance_timezone() -> ZoneInfo:
    raw_name = (get_settings().attendance_timezone or "").strip() or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(raw_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("attendance_timezone_invalid", extra={"configured": raw_name})
        return ZoneInfo(DEFAULT_TIMEZONE)


def normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return datetime.now(timezone.utc)

    # SQLite hands back naive values; everything is stored as UTC.
    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)

    return ts_utc.astimezone(timezone.utc)


def local_day_from_utc(ts_utc: datetime) -> date:
    return normalize_ts(ts_utc).astimezone(attendance_timezone()).date()


def local_day_bounds_utc(day_date: date) -> tuple[datetime, datetime]:
    tz = attendance_timezone()
    local_start = datetime.combine(day_date, time.min, tzinfo=tz)
    local_end = datetime.combine(day_date + timedelta(days=1), time.min, tzinfo=tz)
    return local_start.astimezone(timezone.utc), local_end.astimezone(timezone.utc)


def combine_local_utc(day_date: date, local_time: time) -> datetime:
    local_dt = datetime.combine(day_date, local_time, tzinfo=attendance_timezone())
    return local_dt.astimezone(timezone.utc)


def reconciliation_cutoff_utc(day_date: date) -> datetime:
    return combine_local_utc(day_date, get_settings().reconciliation_cutoff)
