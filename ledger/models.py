from __future__ import annotations

import enum
from datetime import date, datetime, time, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger.db import Base


class ClockEventType(str, enum.Enum):
    CLOCK_IN = "clock_in"
    CLOCK_OUT = "clock_out"
    BREAK_START = "break_start"
    BREAK_END = "break_end"


class ClockEventSource(str, enum.Enum):
    SELF_SERVICE = "self_service"
    ADMINISTRATIVE = "administrative"
    MOBILE = "mobile"
    TERMINAL = "terminal"


class EventOrigin(str, enum.Enum):
    GENUINE = "GENUINE"
    SYNTHETIC = "SYNTHETIC"


class WorkdayStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"


class ScheduleType(str, enum.Enum):
    TOTAL = "total"
    SPLIT = "split"


class AuditActorType(str, enum.Enum):
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


_JSON_DOCUMENT = JSON().with_variant(JSONB(), "postgresql")


class ScheduledShift(Base):
    __tablename__ = "scheduled_shifts"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "day_date",
            "start_time",
            "end_time",
            name="uq_scheduled_shifts_slot",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    day_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    break_start_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    break_end_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    schedule_type: Mapped[ScheduleType] = mapped_column(
        Enum(ScheduleType, name="schedule_type", values_callable=lambda items: [item.value for item in items]),
        nullable=False,
        default=ScheduleType.TOTAL,
    )
    planned_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    daily_workdays: Mapped[list[DailyWorkday]] = relationship(back_populates="scheduled_shift")


class DailyWorkday(Base):
    __tablename__ = "daily_workdays"
    __table_args__ = (
        UniqueConstraint("user_id", "day_date", name="uq_daily_workdays_user_day"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    day_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    scheduled_shift_id: Mapped[int | None] = mapped_column(
        ForeignKey("scheduled_shifts.id", ondelete="SET NULL"),
        nullable=True,
    )
    start_ts: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_ts: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    worked_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    break_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    overtime_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    status: Mapped[WorkdayStatus] = mapped_column(
        Enum(WorkdayStatus, name="workday_status", values_callable=lambda items: [item.value for item in items]),
        nullable=False,
        default=WorkdayStatus.OPEN,
    )
    is_manual: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    scheduled_shift: Mapped[ScheduledShift | None] = relationship(back_populates="daily_workdays")
    clock_events: Mapped[list[ClockEvent]] = relationship(back_populates="daily_workday")


class ClockEvent(Base):
    __tablename__ = "clock_events"
    __table_args__ = (
        Index("ix_clock_events_user_ts", "user_id", "ts_utc"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    daily_workday_id: Mapped[int | None] = mapped_column(
        ForeignKey("daily_workdays.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    type: Mapped[ClockEventType] = mapped_column(
        Enum(ClockEventType, name="clock_event_type", values_callable=lambda items: [item.value for item in items]),
        nullable=False,
    )
    ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    source: Mapped[ClockEventSource] = mapped_column(
        Enum(ClockEventSource, name="clock_event_source", values_callable=lambda items: [item.value for item in items]),
        nullable=False,
    )
    origin: Mapped[EventOrigin] = mapped_column(
        Enum(EventOrigin, name="clock_event_origin"),
        nullable=False,
        default=EventOrigin.GENUINE,
    )
    note: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    daily_workday: Mapped[DailyWorkday | None] = relationship(back_populates="clock_events")

    @property
    def auto_generated(self) -> bool:
        return self.origin == EventOrigin.SYNTHETIC


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    entity_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(_JSON_DOCUMENT, nullable=False, default=dict)
