from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date, time

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger.audit import record_audit
from ledger.errors import ValidationError
from ledger.models import AuditActorType, ScheduledShift
from ledger.schemas import ScheduledShiftCreate
from ledger.services.transactions import run_in_transaction

logger = logging.getLogger("ledger.schedules")

ShiftKey = tuple[int, date, time, time]


def _to_minute(value: time) -> time:
    return value.replace(second=0, microsecond=0, tzinfo=None)


def _minutes_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


def planned_shift_minutes(
    start_time: time,
    end_time: time,
    break_start_time: time | None = None,
    break_end_time: time | None = None,
) -> int:
    work_minutes = _minutes_of_day(end_time) - _minutes_of_day(start_time)
    if work_minutes <= 0:
        raise ValidationError(
            f"End time ({end_time:%H:%M}) must be later than start time ({start_time:%H:%M}).",
            details={"start_time": start_time.isoformat(), "end_time": end_time.isoformat()},
        )
    if break_start_time is None or break_end_time is None:
        return work_minutes

    break_minutes = _minutes_of_day(break_end_time) - _minutes_of_day(break_start_time)
    if break_minutes < 0 or break_minutes >= work_minutes:
        raise ValidationError(
            "Planned break must end after it starts and fit inside the shift.",
            details={
                "break_start_time": break_start_time.isoformat(),
                "break_end_time": break_end_time.isoformat(),
            },
        )
    return work_minutes - break_minutes


def _shift_key(user_id: int, day_date: date, start_time: time, end_time: time) -> ShiftKey:
    return user_id, day_date, _to_minute(start_time), _to_minute(end_time)


def _existing_shift_keys(db: Session, entries: Sequence[ScheduledShiftCreate]) -> set[ShiftKey]:
    user_ids = {entry.user_id for entry in entries}
    day_dates = {entry.day_date for entry in entries}
    rows = db.scalars(
        select(ScheduledShift).where(
            ScheduledShift.user_id.in_(user_ids),
            ScheduledShift.day_date.in_(day_dates),
        )
    ).all()
    return {_shift_key(row.user_id, row.day_date, row.start_time, row.end_time) for row in rows}


def create_scheduled_shifts_bulk(
    db: Session,
    entries: Sequence[ScheduledShiftCreate],
    *,
    actor_id: str = "admin",
) -> list[ScheduledShift]:
    """Insert the shifts whose (user, day, start, end) slot is not planned yet.

    Returns only the rows inserted by this call, so resubmitting the same list
    returns an empty list and leaves the table unchanged.
    """
    if not entries:
        return []

    planned = [
        (
            entry,
            planned_shift_minutes(
                entry.start_time,
                entry.end_time,
                entry.break_start_time,
                entry.break_end_time,
            ),
        )
        for entry in entries
    ]

    def _insert_missing() -> list[ScheduledShift]:
        seen = _existing_shift_keys(db, entries)
        created: list[ScheduledShift] = []
        for entry, planned_minutes in planned:
            key = _shift_key(entry.user_id, entry.day_date, entry.start_time, entry.end_time)
            if key in seen:
                continue
            seen.add(key)
            shift = ScheduledShift(
                user_id=entry.user_id,
                day_date=entry.day_date,
                start_time=key[2],
                end_time=key[3],
                break_start_time=_to_minute(entry.break_start_time) if entry.break_start_time else None,
                break_end_time=_to_minute(entry.break_end_time) if entry.break_end_time else None,
                schedule_type=entry.schedule_type,
                planned_minutes=planned_minutes,
            )
            db.add(shift)
            created.append(shift)
        db.flush()
        if created:
            record_audit(
                db,
                actor_type=AuditActorType.ADMIN,
                actor_id=actor_id,
                action="SCHEDULED_SHIFTS_BULK_CREATED",
                entity_type="scheduled_shift",
                details={
                    "submitted": len(entries),
                    "created_ids": [shift.id for shift in created],
                },
            )
        return created

    created = run_in_transaction(db, _insert_missing, name="create_scheduled_shifts_bulk")
    logger.info(
        "scheduled_shifts_bulk_created",
        extra={"submitted_count": len(entries), "created_count": len(created)},
    )
    return created


def list_scheduled_shifts(
    db: Session,
    *,
    user_id: int | None,
    start_date: date,
    end_date: date,
) -> list[ScheduledShift]:
    if start_date > end_date:
        raise ValidationError("start_date must be on or before end_date.")
    stmt = (
        select(ScheduledShift)
        .where(
            ScheduledShift.day_date >= start_date,
            ScheduledShift.day_date <= end_date,
        )
        .order_by(ScheduledShift.day_date.asc(), ScheduledShift.start_time.asc(), ScheduledShift.id.asc())
    )
    if user_id is not None:
        stmt = stmt.where(ScheduledShift.user_id == user_id)
    return list(db.scalars(stmt).all())


def resolve_shift_for_day(db: Session, *, user_id: int, day_date: date) -> ScheduledShift | None:
    return db.scalar(
        select(ScheduledShift)
        .where(
            ScheduledShift.user_id == user_id,
            ScheduledShift.day_date == day_date,
        )
        .order_by(ScheduledShift.start_time.asc(), ScheduledShift.id.asc())
        .limit(1)
    )
