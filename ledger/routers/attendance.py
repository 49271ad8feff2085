from datetime import date

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from ledger.db import get_db
from ledger.models import ClockEventSource
from ledger.schemas import (
    BreakRead,
    ClockActionResponse,
    ClockEventCreate,
    ClockEventRead,
    DailyWorkdayDetailRead,
    DailyWorkdayRead,
    ScheduledShiftRead,
    TodaySnapshotResponse,
)
from ledger.services.clock_events import get_today_snapshot, list_clock_events, record_clock_event
from ledger.services.schedules import list_scheduled_shifts
from ledger.services.workday_calc import Break
from ledger.services.workdays import get_workday_detail, list_workday_details

router = APIRouter(tags=["attendance"])


def _break_reads(breaks: list[Break]) -> list[BreakRead]:
    return [BreakRead(start=item.start, end=item.end) for item in breaks]


@router.post("/api/clock-events", response_model=ClockActionResponse, status_code=status.HTTP_201_CREATED)
def create_clock_event(
    payload: ClockEventCreate,
    request: Request,
    db: Session = Depends(get_db),
) -> ClockActionResponse:
    request.state.actor = "admin" if payload.source == ClockEventSource.ADMINISTRATIVE else "employee"
    request.state.user_id = payload.user_id
    result = record_clock_event(
        db,
        user_id=payload.user_id,
        event_type=payload.type,
        source=payload.source,
        ts_utc=payload.ts_utc,
        day_date=payload.day_date,
        note=payload.note,
    )
    request.state.event_id = result.event.id
    return ClockActionResponse(
        event=ClockEventRead.model_validate(result.event),
        workday=DailyWorkdayRead.model_validate(result.workday),
    )


@router.get("/api/users/{user_id}/today", response_model=TodaySnapshotResponse)
def read_today(
    user_id: int,
    request: Request,
    db: Session = Depends(get_db),
) -> TodaySnapshotResponse:
    request.state.user_id = user_id
    snapshot = get_today_snapshot(db, user_id=user_id)
    return TodaySnapshotResponse(
        day_date=snapshot.day_date,
        current_status=snapshot.current_status,
        workday=DailyWorkdayRead.model_validate(snapshot.workday) if snapshot.workday is not None else None,
        events=[ClockEventRead.model_validate(event) for event in snapshot.events],
        breaks=_break_reads(snapshot.breaks),
    )


@router.get("/api/clock-events", response_model=list[ClockEventRead])
def read_clock_events(
    user_id: int = Query(ge=1),
    start_date: date = Query(),
    end_date: date = Query(),
    db: Session = Depends(get_db),
) -> list[ClockEventRead]:
    events = list_clock_events(db, user_id=user_id, start_date=start_date, end_date=end_date)
    return [ClockEventRead.model_validate(event) for event in events]


@router.get("/api/daily-workdays", response_model=list[DailyWorkdayDetailRead])
def read_daily_workdays(
    start_date: date = Query(),
    end_date: date = Query(),
    user_id: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
) -> list[DailyWorkdayDetailRead]:
    details = list_workday_details(db, user_id=user_id, start_date=start_date, end_date=end_date)
    return [DailyWorkdayDetailRead.from_detail(detail) for detail in details]


@router.get("/api/daily-workdays/{workday_id}", response_model=DailyWorkdayDetailRead)
def read_daily_workday(
    workday_id: int,
    db: Session = Depends(get_db),
) -> DailyWorkdayDetailRead:
    return DailyWorkdayDetailRead.from_detail(get_workday_detail(db, workday_id))


@router.get("/api/schedules", response_model=list[ScheduledShiftRead])
def read_schedules(
    start_date: date = Query(),
    end_date: date = Query(),
    user_id: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
) -> list[ScheduledShiftRead]:
    shifts = list_scheduled_shifts(db, user_id=user_id, start_date=start_date, end_date=end_date)
    return [ScheduledShiftRead.model_validate(shift) for shift in shifts]
