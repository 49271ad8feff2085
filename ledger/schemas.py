from datetime import date, datetime, time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ledger.models import (
    ClockEventSource,
    ClockEventType,
    EventOrigin,
    ScheduleType,
    WorkdayStatus,
)


class ClockEventCreate(BaseModel):
    user_id: int = Field(ge=1)
    type: ClockEventType
    source: ClockEventSource = ClockEventSource.SELF_SERVICE
    ts_utc: datetime | None = None
    day_date: date | None = None
    note: str | None = Field(default=None, max_length=1000)


class ClockEventRead(BaseModel):
    id: int
    user_id: int
    daily_workday_id: int | None
    type: ClockEventType
    ts_utc: datetime
    source: ClockEventSource
    origin: EventOrigin
    auto_generated: bool
    note: str | None = None

    model_config = ConfigDict(from_attributes=True)


class DailyWorkdayRead(BaseModel):
    id: int
    user_id: int
    day_date: date
    scheduled_shift_id: int | None = None
    start_ts: datetime | None = None
    end_ts: datetime | None = None
    worked_minutes: int
    break_minutes: int
    overtime_minutes: int
    status: WorkdayStatus
    is_manual: bool = False

    model_config = ConfigDict(from_attributes=True)


class BreakRead(BaseModel):
    start: datetime
    end: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ClockActionResponse(BaseModel):
    event: ClockEventRead
    workday: DailyWorkdayRead


class TodaySnapshotResponse(BaseModel):
    day_date: date
    current_status: Literal["not_started", "working", "on_break", "finished"]
    workday: DailyWorkdayRead | None = None
    events: list[ClockEventRead] = Field(default_factory=list)
    breaks: list[BreakRead] = Field(default_factory=list)


class DailyWorkdayDetailRead(BaseModel):
    workday: DailyWorkdayRead
    events: list[ClockEventRead] = Field(default_factory=list)
    breaks: list[BreakRead] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_detail(cls, detail: Any) -> "DailyWorkdayDetailRead":
        return cls(
            workday=DailyWorkdayRead.model_validate(detail.workday),
            events=[ClockEventRead.model_validate(event) for event in detail.events],
            breaks=[BreakRead(start=item.start, end=item.end) for item in detail.breaks],
        )


class ManualWorkdayCreateRequest(BaseModel):
    user_id: int = Field(ge=1)
    day_date: date
    start_time: time
    end_time: time
    break_minutes: int = Field(default=0, ge=0)
    scheduled_shift_id: int | None = Field(default=None, ge=1)
    note: str | None = Field(default=None, max_length=1000)


class ManualWorkdayUpdateRequest(BaseModel):
    start_time: time | None = None
    end_time: time | None = None
    break_minutes: int | None = Field(default=None, ge=0)
    scheduled_shift_id: int | None = Field(default=None, ge=1)
    note: str | None = Field(default=None, max_length=1000)


class ScheduledShiftCreate(BaseModel):
    user_id: int = Field(ge=1)
    day_date: date
    start_time: time
    end_time: time
    break_start_time: time | None = None
    break_end_time: time | None = None
    schedule_type: ScheduleType = ScheduleType.TOTAL

    @model_validator(mode="after")
    def validate_break_pair(self) -> "ScheduledShiftCreate":
        if (self.break_start_time is None) != (self.break_end_time is None):
            raise ValueError("break_start_time and break_end_time must be sent together")
        return self


class ScheduledShiftRead(BaseModel):
    id: int
    user_id: int
    day_date: date
    start_time: time
    end_time: time
    break_start_time: time | None = None
    break_end_time: time | None = None
    schedule_type: ScheduleType
    planned_minutes: int

    model_config = ConfigDict(from_attributes=True)


class ScheduleBulkCreateRequest(BaseModel):
    schedules: list[ScheduledShiftCreate] = Field(default_factory=list)


class ScheduleBulkCreateResponse(BaseModel):
    created: list[ScheduledShiftRead]
    created_count: int
    skipped_count: int


class ReconciliationRunRequest(BaseModel):
    day_date: date | None = None


class ReconciliationRunResponse(BaseModel):
    day_date: date
    cutoff_utc: datetime
    closed_sessions: int
    closed_breaks: int
    recomputed_user_ids: list[int] = Field(default_factory=list)
    failed_user_ids: list[int] = Field(default_factory=list)


class DeleteResponse(BaseModel):
    ok: bool
    id: int
