from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger.errors import NotFoundError, ValidationError
from ledger.models import ClockEvent, DailyWorkday, ScheduledShift, WorkdayStatus
from ledger.services.schedules import resolve_shift_for_day
from ledger.services.workday_calc import Break, compute_day_totals, order_events, resolve_breaks
from ledger.timezones import local_day_bounds_utc


@dataclass(frozen=True)
class WorkdayDetail:
    workday: DailyWorkday
    events: list[ClockEvent]
    breaks: list[Break]


def _validate_range(start_date: date, end_date: date) -> None:
    if start_date > end_date:
        raise ValidationError(
            "start_date must be on or before end_date.",
            details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )


def list_day_events(db: Session, *, user_id: int, day_date: date) -> list[ClockEvent]:
    day_start, day_end = local_day_bounds_utc(day_date)
    return list(
        db.scalars(
            select(ClockEvent)
            .where(
                ClockEvent.user_id == user_id,
                ClockEvent.ts_utc >= day_start,
                ClockEvent.ts_utc < day_end,
            )
            .order_by(ClockEvent.ts_utc.asc(), ClockEvent.id.asc())
        ).all()
    )


def get_workday_for_day(
    db: Session,
    *,
    user_id: int,
    day_date: date,
    for_update: bool = False,
) -> DailyWorkday | None:
    stmt = select(DailyWorkday).where(
        DailyWorkday.user_id == user_id,
        DailyWorkday.day_date == day_date,
    )
    if for_update:
        stmt = stmt.with_for_update()
    return db.scalar(stmt)


def get_or_create_workday(db: Session, *, user_id: int, day_date: date) -> DailyWorkday:
    workday = get_workday_for_day(db, user_id=user_id, day_date=day_date, for_update=True)
    if workday is not None:
        return workday

    workday = DailyWorkday(
        user_id=user_id,
        day_date=day_date,
        worked_minutes=0,
        break_minutes=0,
        overtime_minutes=0,
        status=WorkdayStatus.OPEN,
        is_manual=False,
    )
    db.add(workday)
    # A concurrent creator trips uq_daily_workdays_user_day here; the caller's transaction retries.
    db.flush()
    return workday


def _resolve_workday_shift(db: Session, workday: DailyWorkday) -> ScheduledShift | None:
    if workday.scheduled_shift_id is not None:
        shift = db.get(ScheduledShift, workday.scheduled_shift_id)
        if shift is not None:
            return shift
    return resolve_shift_for_day(db, user_id=workday.user_id, day_date=workday.day_date)


def recompute_daily_workday(
    db: Session,
    *,
    user_id: int,
    day_date: date,
    workday: DailyWorkday | None = None,
) -> DailyWorkday:
    """Rebuild the (user, day) aggregate from the full ordered event list.

    This is the only place aggregates are written. It also re-stamps every
    event of the day with the aggregate id. No commit happens here.
    """
    db.flush()
    if workday is None:
        workday = get_or_create_workday(db, user_id=user_id, day_date=day_date)

    events = order_events(list_day_events(db, user_id=user_id, day_date=day_date))
    shift = _resolve_workday_shift(db, workday)
    totals = compute_day_totals(
        events,
        planned_minutes=shift.planned_minutes if shift is not None else None,
    )

    workday.start_ts = totals.start_ts
    workday.end_ts = totals.end_ts
    workday.worked_minutes = totals.worked_minutes
    workday.break_minutes = totals.break_minutes
    workday.overtime_minutes = totals.overtime_minutes
    workday.status = totals.status
    workday.scheduled_shift_id = shift.id if shift is not None else None

    for event in events:
        if event.daily_workday_id != workday.id:
            event.daily_workday_id = workday.id

    db.flush()
    return workday


def get_daily_workday(db: Session, workday_id: int) -> DailyWorkday:
    workday = db.get(DailyWorkday, workday_id)
    if workday is None:
        raise NotFoundError("Daily workday not found.", details={"workday_id": workday_id})
    return workday


def get_workday_detail(db: Session, workday_id: int) -> WorkdayDetail:
    workday = get_daily_workday(db, workday_id)
    events = order_events(list_day_events(db, user_id=workday.user_id, day_date=workday.day_date))
    return WorkdayDetail(workday=workday, events=events, breaks=resolve_breaks(events))


def list_daily_workdays(
    db: Session,
    *,
    user_id: int | None,
    start_date: date,
    end_date: date,
) -> list[DailyWorkday]:
    _validate_range(start_date, end_date)
    stmt = (
        select(DailyWorkday)
        .where(
            DailyWorkday.day_date >= start_date,
            DailyWorkday.day_date <= end_date,
        )
        .order_by(DailyWorkday.day_date.asc(), DailyWorkday.user_id.asc())
    )
    if user_id is not None:
        stmt = stmt.where(DailyWorkday.user_id == user_id)
    return list(db.scalars(stmt).all())


def list_workday_details(
    db: Session,
    *,
    user_id: int | None,
    start_date: date,
    end_date: date,
) -> list[WorkdayDetail]:
    workdays = list_daily_workdays(db, user_id=user_id, start_date=start_date, end_date=end_date)
    if not workdays:
        return []

    events_by_workday: dict[int, list[ClockEvent]] = defaultdict(list)
    linked_events = db.scalars(
        select(ClockEvent)
        .where(ClockEvent.daily_workday_id.in_([workday.id for workday in workdays]))
        .order_by(ClockEvent.ts_utc.asc(), ClockEvent.id.asc())
    ).all()
    for event in linked_events:
        events_by_workday[event.daily_workday_id].append(event)

    details: list[WorkdayDetail] = []
    for workday in workdays:
        events = events_by_workday.get(workday.id, [])
        details.append(WorkdayDetail(workday=workday, events=events, breaks=resolve_breaks(events)))
    return details
