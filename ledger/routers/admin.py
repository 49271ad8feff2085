from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from ledger.db import get_db
from ledger.errors import get_request_id
from ledger.schemas import (
    DailyWorkdayDetailRead,
    DeleteResponse,
    ManualWorkdayCreateRequest,
    ManualWorkdayUpdateRequest,
    ReconciliationRunRequest,
    ReconciliationRunResponse,
    ScheduleBulkCreateRequest,
    ScheduleBulkCreateResponse,
    ScheduledShiftRead,
)
from ledger.services.manual_workdays import (
    create_manual_workday,
    delete_manual_workday,
    update_manual_workday,
)
from ledger.services.reconciliation import run_reconciliation_sweep
from ledger.services.schedules import create_scheduled_shifts_bulk
from ledger.services.workdays import get_workday_detail

router = APIRouter(prefix="/api/admin", tags=["admin"])
ACTOR_HEADER = "X-Actor-Id"


def _admin_actor(request: Request) -> str:
    actor_id = (request.headers.get(ACTOR_HEADER) or "").strip() or "admin"
    request.state.actor = "admin"
    request.state.actor_id = actor_id
    return actor_id


@router.post(
    "/daily-workdays",
    response_model=DailyWorkdayDetailRead,
    status_code=status.HTTP_201_CREATED,
)
def create_daily_workday(
    payload: ManualWorkdayCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> DailyWorkdayDetailRead:
    workday = create_manual_workday(
        db,
        user_id=payload.user_id,
        day_date=payload.day_date,
        start_time=payload.start_time,
        end_time=payload.end_time,
        break_minutes=payload.break_minutes,
        scheduled_shift_id=payload.scheduled_shift_id,
        note=payload.note,
        actor_id=_admin_actor(request),
        request_id=get_request_id(request),
    )
    return DailyWorkdayDetailRead.from_detail(get_workday_detail(db, workday.id))


@router.patch("/daily-workdays/{workday_id}", response_model=DailyWorkdayDetailRead)
def update_daily_workday(
    workday_id: int,
    payload: ManualWorkdayUpdateRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> DailyWorkdayDetailRead:
    workday = update_manual_workday(
        db,
        workday_id,
        start_time=payload.start_time,
        end_time=payload.end_time,
        break_minutes=payload.break_minutes,
        scheduled_shift_id=payload.scheduled_shift_id,
        note=payload.note,
        actor_id=_admin_actor(request),
        request_id=get_request_id(request),
    )
    return DailyWorkdayDetailRead.from_detail(get_workday_detail(db, workday.id))


@router.delete("/daily-workdays/{workday_id}", response_model=DeleteResponse)
def delete_daily_workday(
    workday_id: int,
    request: Request,
    db: Session = Depends(get_db),
) -> DeleteResponse:
    delete_manual_workday(
        db,
        workday_id,
        actor_id=_admin_actor(request),
        request_id=get_request_id(request),
    )
    return DeleteResponse(ok=True, id=workday_id)


@router.post(
    "/schedules/bulk",
    response_model=ScheduleBulkCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_schedules_bulk(
    payload: ScheduleBulkCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> ScheduleBulkCreateResponse:
    created = create_scheduled_shifts_bulk(db, payload.schedules, actor_id=_admin_actor(request))
    return ScheduleBulkCreateResponse(
        created=[ScheduledShiftRead.model_validate(shift) for shift in created],
        created_count=len(created),
        skipped_count=len(payload.schedules) - len(created),
    )


@router.post("/reconciliation/run", response_model=ReconciliationRunResponse)
def run_reconciliation(
    request: Request,
    payload: ReconciliationRunRequest | None = None,
    db: Session = Depends(get_db),
) -> ReconciliationRunResponse:
    _admin_actor(request)
    report = run_reconciliation_sweep(
        datetime.now(timezone.utc),
        db=db,
        day_date=payload.day_date if payload is not None else None,
    )
    return ReconciliationRunResponse(
        day_date=report.day_date,
        cutoff_utc=report.cutoff_utc,
        closed_sessions=report.closed_sessions,
        closed_breaks=report.closed_breaks,
        recomputed_user_ids=report.recomputed_user_ids,
        failed_user_ids=report.failed_user_ids,
    )
