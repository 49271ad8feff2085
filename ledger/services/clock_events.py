from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger.errors import SequenceError, ValidationError
from ledger.models import (
    ClockEvent,
    ClockEventSource,
    ClockEventType,
    DailyWorkday,
    EventOrigin,
)
from ledger.services.transactions import run_in_transaction, user_day_lock
from ledger.services.workday_calc import (
    Break,
    DayStatus,
    current_day_status,
    find_sequence_violation,
    order_events,
    resolve_breaks,
)
from ledger.services.workdays import (
    get_or_create_workday,
    get_workday_for_day,
    list_day_events,
    recompute_daily_workday,
)
from ledger.settings import get_settings
from ledger.timezones import (
    attendance_timezone,
    combine_local_utc,
    local_day_bounds_utc,
    local_day_from_utc,
    normalize_ts,
)

logger = logging.getLogger("ledger.clock_events")

_SEQUENCE_MESSAGES: dict[tuple[str, ClockEventType], str] = {
    ("not_started", ClockEventType.CLOCK_OUT): "Cannot clock out before clocking in.",
    ("not_started", ClockEventType.BREAK_START): "Cannot start a break before clocking in.",
    ("not_started", ClockEventType.BREAK_END): "Cannot end a break that was never started.",
    ("working", ClockEventType.CLOCK_IN): "Already clocked in.",
    ("working", ClockEventType.BREAK_END): "Cannot end a break that was never started.",
    ("on_break", ClockEventType.CLOCK_IN): "Already clocked in and currently on break.",
    ("on_break", ClockEventType.CLOCK_OUT): "Cannot clock out while on break. End the break first.",
    ("on_break", ClockEventType.BREAK_START): "A break is already in progress.",
    ("finished", ClockEventType.CLOCK_OUT): "Already clocked out.",
    ("finished", ClockEventType.BREAK_START): "Cannot start a break outside a work session.",
    ("finished", ClockEventType.BREAK_END): "Cannot end a break that was never started.",
}


@dataclass(frozen=True)
class ClockActionResult:
    event: ClockEvent
    workday: DailyWorkday


@dataclass(frozen=True)
class TodaySnapshot:
    day_date: date
    current_status: DayStatus
    workday: DailyWorkday | None
    events: list[ClockEvent]
    breaks: list[Break]


def coerce_event_type(value: ClockEventType | str) -> ClockEventType:
    try:
        return ClockEventType(value)
    except ValueError as exc:
        raise ValidationError(
            f"Invalid clock event type: {value!r}.",
            details={"allowed": [item.value for item in ClockEventType]},
        ) from exc


def coerce_event_source(value: ClockEventSource | str) -> ClockEventSource:
    try:
        return ClockEventSource(value)
    except ValueError as exc:
        raise ValidationError(
            f"Invalid clock event source: {value!r}.",
            details={"allowed": [item.value for item in ClockEventSource]},
        ) from exc


def _validate_user_id(user_id: int) -> None:
    if isinstance(user_id, bool) or not isinstance(user_id, int) or user_id < 1:
        raise ValidationError("user_id must be a positive integer.", details={"user_id": user_id})


def resolve_event_ts(
    *,
    ts_utc: datetime | None,
    day_date: date | None,
    now_utc: datetime,
) -> datetime:
    if ts_utc is not None and day_date is not None:
        raise ValidationError("ts_utc and day_date cannot be sent together.")
    if ts_utc is not None:
        return normalize_ts(ts_utc)
    if day_date is not None:
        local_now = now_utc.astimezone(attendance_timezone())
        wall_clock = local_now.time().replace(tzinfo=None)
        return combine_local_utc(day_date, wall_clock)
    return now_utc


def _validate_ts_window(ts_utc: datetime, *, now_utc: datetime) -> None:
    settings = get_settings()
    latest_allowed = now_utc + timedelta(seconds=settings.clock_future_tolerance_seconds)
    if ts_utc > latest_allowed:
        raise ValidationError(
            "Clock event timestamp cannot be in the future.",
            details={"ts_utc": ts_utc.isoformat(), "now_utc": now_utc.isoformat()},
        )
    earliest_allowed = now_utc - timedelta(days=settings.clock_max_backdate_days)
    if ts_utc < earliest_allowed:
        raise ValidationError(
            f"Clock event timestamp cannot be older than {settings.clock_max_backdate_days} days.",
            details={"ts_utc": ts_utc.isoformat(), "now_utc": now_utc.isoformat()},
        )


def _raise_sequence_error(
    *,
    events: list[ClockEvent],
    new_event: ClockEvent,
    user_id: int,
    day_date: date,
) -> None:
    violation = find_sequence_violation(events)
    if violation is None:
        return

    offending = events[violation.position]
    if offending is new_event:
        message = _SEQUENCE_MESSAGES.get(
            (violation.status, violation.event_type),
            "Clock action does not fit the current day sequence.",
        )
    else:
        # The new event sits earlier in the day and breaks an already stored event after it.
        message = "Clock action conflicts with later events of the same day."
    raise SequenceError(
        message,
        details={
            "user_id": user_id,
            "day_date": day_date.isoformat(),
            "event_type": new_event.type.value,
            "current_status": current_day_status([event for event in events if event is not new_event]),
            "conflicting_event_type": violation.event_type.value,
            "status_at_conflict": violation.status,
        },
    )


def append_clock_event(
    db: Session,
    *,
    user_id: int,
    event_type: ClockEventType,
    ts_utc: datetime,
    source: ClockEventSource,
    origin: EventOrigin = EventOrigin.GENUINE,
    note: str | None = None,
) -> ClockActionResult:
    """Insert one event and recompute its day without committing.

    The caller owns the transaction and the (user, day) lock.
    """
    day_date = local_day_from_utc(ts_utc)

    if event_type == ClockEventType.CLOCK_IN:
        workday = get_or_create_workday(db, user_id=user_id, day_date=day_date)
    else:
        workday = get_workday_for_day(db, user_id=user_id, day_date=day_date, for_update=True)
        if workday is None:
            raise SequenceError(
                "The first clock event of a day must be a clock-in.",
                details={
                    "user_id": user_id,
                    "day_date": day_date.isoformat(),
                    "event_type": event_type.value,
                    "current_status": "not_started",
                },
            )

    new_event = ClockEvent(
        user_id=user_id,
        daily_workday_id=workday.id,
        type=event_type,
        ts_utc=ts_utc,
        source=source,
        origin=origin,
        note=note,
    )
    existing = list_day_events(db, user_id=user_id, day_date=day_date)
    _raise_sequence_error(
        events=order_events([*existing, new_event]),
        new_event=new_event,
        user_id=user_id,
        day_date=day_date,
    )

    db.add(new_event)
    workday = recompute_daily_workday(db, user_id=user_id, day_date=day_date, workday=workday)
    return ClockActionResult(event=new_event, workday=workday)


def record_clock_event(
    db: Session,
    *,
    user_id: int,
    event_type: ClockEventType | str,
    source: ClockEventSource | str = ClockEventSource.SELF_SERVICE,
    ts_utc: datetime | None = None,
    day_date: date | None = None,
    note: str | None = None,
    origin: EventOrigin = EventOrigin.GENUINE,
    now_utc: datetime | None = None,
) -> ClockActionResult:
    _validate_user_id(user_id)
    resolved_type = coerce_event_type(event_type)
    resolved_source = coerce_event_source(source)
    reference_now = normalize_ts(now_utc)
    event_ts = resolve_event_ts(ts_utc=ts_utc, day_date=day_date, now_utc=reference_now)
    if origin == EventOrigin.GENUINE and resolved_source != ClockEventSource.ADMINISTRATIVE:
        _validate_ts_window(event_ts, now_utc=reference_now)

    event_day = local_day_from_utc(event_ts)
    with user_day_lock(user_id, event_day):
        result = run_in_transaction(
            db,
            lambda: append_clock_event(
                db,
                user_id=user_id,
                event_type=resolved_type,
                ts_utc=event_ts,
                source=resolved_source,
                origin=origin,
                note=note,
            ),
            name="record_clock_event",
        )

    logger.info(
        "clock_event_recorded",
        extra={
            "user_id": user_id,
            "event_id": result.event.id,
            "event_type": resolved_type.value,
            "source": resolved_source.value,
            "origin": origin.value,
            "day_date": event_day.isoformat(),
            "workday_id": result.workday.id,
            "workday_status": result.workday.status.value,
            "worked_minutes": result.workday.worked_minutes,
        },
    )
    return result


def list_clock_events(
    db: Session,
    *,
    user_id: int,
    start_date: date,
    end_date: date,
) -> list[ClockEvent]:
    if start_date > end_date:
        raise ValidationError(
            "start_date must be on or before end_date.",
            details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )
    range_start, _ = local_day_bounds_utc(start_date)
    _, range_end = local_day_bounds_utc(end_date)
    return list(
        db.scalars(
            select(ClockEvent)
            .where(
                ClockEvent.user_id == user_id,
                ClockEvent.ts_utc >= range_start,
                ClockEvent.ts_utc < range_end,
            )
            .order_by(ClockEvent.ts_utc.asc(), ClockEvent.id.asc())
        ).all()
    )


def get_today_snapshot(
    db: Session,
    *,
    user_id: int,
    now_utc: datetime | None = None,
) -> TodaySnapshot:
    reference_now = normalize_ts(now_utc)
    day_date = local_day_from_utc(reference_now)
    events = order_events(list_day_events(db, user_id=user_id, day_date=day_date))
    return TodaySnapshot(
        day_date=day_date,
        current_status=current_day_status(events),
        workday=get_workday_for_day(db, user_id=user_id, day_date=day_date),
        events=events,
        breaks=resolve_breaks(events),
    )
