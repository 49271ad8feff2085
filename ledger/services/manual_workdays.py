from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta

from sqlalchemy.orm import Session

from ledger.audit import record_audit
from ledger.errors import ConflictError, NotFoundError, ValidationError
from ledger.models import (
    AuditActorType,
    ClockEvent,
    ClockEventSource,
    ClockEventType,
    DailyWorkday,
    EventOrigin,
    ScheduledShift,
    WorkdayStatus,
)
from ledger.services.transactions import run_in_transaction, user_day_lock
from ledger.services.workdays import (
    get_daily_workday,
    get_workday_for_day,
    list_day_events,
    recompute_daily_workday,
)
from ledger.timezones import attendance_timezone, combine_local_utc, normalize_ts

logger = logging.getLogger("ledger.manual_workdays")

MANUAL_EVENT_NOTE = "Manual workday entry"


def _to_minute(value: time) -> time:
    return value.replace(second=0, microsecond=0, tzinfo=None)


def manual_window_utc(
    day_date: date,
    start_time: time,
    end_time: time,
    break_minutes: int,
) -> tuple[datetime, datetime]:
    start_utc = combine_local_utc(day_date, _to_minute(start_time))
    end_utc = combine_local_utc(day_date, _to_minute(end_time))
    if end_utc <= start_utc:
        raise ValidationError(
            "End time must be later than start time.",
            details={"start_time": start_time.isoformat(), "end_time": end_time.isoformat()},
        )

    total_minutes = int((end_utc - start_utc).total_seconds() // 60)
    if break_minutes < 0 or break_minutes >= total_minutes:
        raise ValidationError(
            "Break minutes must be zero or more and shorter than the workday.",
            details={"break_minutes": break_minutes, "total_minutes": total_minutes},
        )
    return start_utc, end_utc


def build_manual_events(
    *,
    user_id: int,
    day_date: date,
    start_time: time,
    end_time: time,
    break_minutes: int,
    note: str | None = None,
) -> list[ClockEvent]:
    """Synthesize clock_in, an optional break centred on the midpoint, and clock_out."""
    start_utc, end_utc = manual_window_utc(day_date, start_time, end_time, break_minutes)
    planned: list[tuple[ClockEventType, datetime]] = [(ClockEventType.CLOCK_IN, start_utc)]
    if break_minutes > 0:
        midpoint = start_utc + (end_utc - start_utc) / 2
        break_length = timedelta(minutes=break_minutes)
        break_start = midpoint - break_length / 2
        planned.append((ClockEventType.BREAK_START, break_start))
        planned.append((ClockEventType.BREAK_END, break_start + break_length))
    planned.append((ClockEventType.CLOCK_OUT, end_utc))

    return [
        ClockEvent(
            user_id=user_id,
            type=event_type,
            ts_utc=ts_utc,
            source=ClockEventSource.ADMINISTRATIVE,
            origin=EventOrigin.SYNTHETIC,
            note=note or MANUAL_EVENT_NOTE,
        )
        for event_type, ts_utc in planned
    ]


def _resolve_linked_shift(
    db: Session,
    *,
    user_id: int,
    day_date: date,
    scheduled_shift_id: int,
) -> ScheduledShift:
    shift = db.get(ScheduledShift, scheduled_shift_id)
    if shift is None:
        raise NotFoundError("Scheduled shift not found.", details={"scheduled_shift_id": scheduled_shift_id})
    if shift.user_id != user_id or shift.day_date != day_date:
        raise ValidationError(
            "Scheduled shift belongs to another user or day.",
            details={
                "scheduled_shift_id": scheduled_shift_id,
                "user_id": user_id,
                "day_date": day_date.isoformat(),
            },
        )
    return shift


def _genuine_event_ids(events: list[ClockEvent]) -> list[int]:
    return [event.id for event in events if event.origin == EventOrigin.GENUINE]


def _ensure_no_genuine_events(
    events: list[ClockEvent],
    *,
    user_id: int,
    day_date: date,
    action: str,
) -> None:
    genuine_ids = _genuine_event_ids(events)
    if genuine_ids:
        raise ConflictError(
            f"Cannot {action} a manual workday on a day with real clock events.",
            details={
                "user_id": user_id,
                "day_date": day_date.isoformat(),
                "genuine_event_ids": genuine_ids,
            },
        )


def _local_time_of(ts_utc: datetime | None) -> time | None:
    if ts_utc is None:
        return None
    return normalize_ts(ts_utc).astimezone(attendance_timezone()).time().replace(tzinfo=None)


def _audit_manual_change(
    db: Session,
    *,
    action: str,
    workday_id: int,
    actor_id: str,
    details: dict,
    request_id: str | None,
) -> None:
    record_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=actor_id,
        action=action,
        entity_type="daily_workday",
        entity_id=workday_id,
        details=details,
        request_id=request_id,
    )


def create_manual_workday(
    db: Session,
    *,
    user_id: int,
    day_date: date,
    start_time: time,
    end_time: time,
    break_minutes: int = 0,
    scheduled_shift_id: int | None = None,
    note: str | None = None,
    actor_id: str = "admin",
    request_id: str | None = None,
) -> DailyWorkday:
    manual_window_utc(day_date, start_time, end_time, break_minutes)

    def _create() -> DailyWorkday:
        if list_day_events(db, user_id=user_id, day_date=day_date):
            raise ConflictError(
                "Clock events already exist for this day.",
                details={"user_id": user_id, "day_date": day_date.isoformat()},
            )
        if get_workday_for_day(db, user_id=user_id, day_date=day_date, for_update=True) is not None:
            raise ConflictError(
                "A workday already exists for this day.",
                details={"user_id": user_id, "day_date": day_date.isoformat()},
            )

        workday = DailyWorkday(
            user_id=user_id,
            day_date=day_date,
            worked_minutes=0,
            break_minutes=0,
            overtime_minutes=0,
            status=WorkdayStatus.OPEN,
            is_manual=True,
        )
        if scheduled_shift_id is not None:
            shift = _resolve_linked_shift(
                db,
                user_id=user_id,
                day_date=day_date,
                scheduled_shift_id=scheduled_shift_id,
            )
            workday.scheduled_shift_id = shift.id
        db.add(workday)
        db.flush()

        for event in build_manual_events(
            user_id=user_id,
            day_date=day_date,
            start_time=start_time,
            end_time=end_time,
            break_minutes=break_minutes,
            note=note,
        ):
            event.daily_workday_id = workday.id
            db.add(event)
        recompute_daily_workday(db, user_id=user_id, day_date=day_date, workday=workday)
        _audit_manual_change(
            db,
            action="MANUAL_WORKDAY_CREATED",
            workday_id=workday.id,
            actor_id=actor_id,
            details={
                "user_id": user_id,
                "day_date": day_date.isoformat(),
                "start_time": start_time.isoformat(),
                "end_time": end_time.isoformat(),
                "break_minutes": break_minutes,
                "worked_minutes": workday.worked_minutes,
            },
            request_id=request_id,
        )
        return workday

    with user_day_lock(user_id, day_date):
        workday = run_in_transaction(db, _create, name="create_manual_workday")

    logger.info(
        "manual_workday_created",
        extra={"workday_id": workday.id, "user_id": user_id, "day_date": day_date.isoformat()},
    )
    return workday


def update_manual_workday(
    db: Session,
    workday_id: int,
    *,
    start_time: time | None = None,
    end_time: time | None = None,
    break_minutes: int | None = None,
    scheduled_shift_id: int | None = None,
    note: str | None = None,
    actor_id: str = "admin",
    request_id: str | None = None,
) -> DailyWorkday:
    target = get_daily_workday(db, workday_id)
    user_id = target.user_id
    day_date = target.day_date

    def _update() -> DailyWorkday:
        workday = get_workday_for_day(db, user_id=user_id, day_date=day_date, for_update=True)
        if workday is None or workday.id != workday_id:
            raise NotFoundError("Daily workday not found.", details={"workday_id": workday_id})

        events = list_day_events(db, user_id=user_id, day_date=day_date)
        _ensure_no_genuine_events(events, user_id=user_id, day_date=day_date, action="update")

        new_start = start_time if start_time is not None else _local_time_of(workday.start_ts)
        new_end = end_time if end_time is not None else _local_time_of(workday.end_ts)
        new_break = break_minutes if break_minutes is not None else workday.break_minutes
        if new_start is None or new_end is None:
            raise ValidationError(
                "start_time and end_time are required for a workday without recorded times.",
                details={"workday_id": workday_id},
            )
        previous_note = next((event.note for event in events if event.type == ClockEventType.CLOCK_IN), None)
        replacements = build_manual_events(
            user_id=user_id,
            day_date=day_date,
            start_time=new_start,
            end_time=new_end,
            break_minutes=new_break,
            note=note or previous_note,
        )

        if scheduled_shift_id is not None:
            shift = _resolve_linked_shift(
                db,
                user_id=user_id,
                day_date=day_date,
                scheduled_shift_id=scheduled_shift_id,
            )
            workday.scheduled_shift_id = shift.id

        for event in events:
            db.delete(event)
        db.flush()
        for event in replacements:
            event.daily_workday_id = workday.id
            db.add(event)
        workday.is_manual = True

        recompute_daily_workday(db, user_id=user_id, day_date=day_date, workday=workday)
        _audit_manual_change(
            db,
            action="MANUAL_WORKDAY_UPDATED",
            workday_id=workday.id,
            actor_id=actor_id,
            details={
                "user_id": user_id,
                "day_date": day_date.isoformat(),
                "start_time": new_start.isoformat(),
                "end_time": new_end.isoformat(),
                "break_minutes": new_break,
                "replaced_event_ids": [event.id for event in events],
                "worked_minutes": workday.worked_minutes,
            },
            request_id=request_id,
        )
        return workday

    with user_day_lock(user_id, day_date):
        workday = run_in_transaction(db, _update, name="update_manual_workday")

    logger.info(
        "manual_workday_updated",
        extra={"workday_id": workday.id, "user_id": user_id, "day_date": day_date.isoformat()},
    )
    return workday


def delete_manual_workday(
    db: Session,
    workday_id: int,
    *,
    actor_id: str = "admin",
    request_id: str | None = None,
) -> None:
    target = get_daily_workday(db, workday_id)
    user_id = target.user_id
    day_date = target.day_date

    def _delete() -> None:
        workday = get_workday_for_day(db, user_id=user_id, day_date=day_date, for_update=True)
        if workday is None or workday.id != workday_id:
            raise NotFoundError("Daily workday not found.", details={"workday_id": workday_id})

        events = list_day_events(db, user_id=user_id, day_date=day_date)
        _ensure_no_genuine_events(events, user_id=user_id, day_date=day_date, action="delete")

        deleted_event_ids = [event.id for event in events]
        for event in events:
            db.delete(event)
        db.flush()
        db.delete(workday)
        db.flush()
        _audit_manual_change(
            db,
            action="MANUAL_WORKDAY_DELETED",
            workday_id=workday_id,
            actor_id=actor_id,
            details={
                "user_id": user_id,
                "day_date": day_date.isoformat(),
                "deleted_event_ids": deleted_event_ids,
            },
            request_id=request_id,
        )

    with user_day_lock(user_id, day_date):
        run_in_transaction(db, _delete, name="delete_manual_workday")

    logger.info(
        "manual_workday_deleted",
        extra={"workday_id": workday_id, "user_id": user_id, "day_date": day_date.isoformat()},
    )
