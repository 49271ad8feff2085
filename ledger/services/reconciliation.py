from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger.audit import record_audit
from ledger.db import SessionLocal
from ledger.errors import ValidationError
from ledger.models import (
    AuditActorType,
    AuditLog,
    ClockEventSource,
    ClockEventType,
    DailyWorkday,
    EventOrigin,
    WorkdayStatus,
)
from ledger.services.clock_events import append_clock_event
from ledger.services.transactions import run_in_transaction, user_day_lock
from ledger.services.workday_calc import find_open_segments, order_events
from ledger.services.workdays import list_day_events
from ledger.timezones import local_day_from_utc, normalize_ts, reconciliation_cutoff_utc

logger = logging.getLogger("ledger.reconciliation")

SWEEP_BREAK_NOTE = "Break closed automatically at day end"
SWEEP_CLOCK_OUT_NOTE = "Session closed automatically at day end"
SWEEP_AUDIT_ACTION = "RECONCILIATION_SWEEP_COMPLETED"


@dataclass
class UserDayClosure:
    closed_session: bool = False
    closed_break: bool = False


@dataclass
class SweepReport:
    day_date: date
    cutoff_utc: datetime
    closed_sessions: int = 0
    closed_breaks: int = 0
    recomputed_user_ids: list[int] = field(default_factory=list)
    failed_user_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "day_date": self.day_date.isoformat(),
            "cutoff_utc": self.cutoff_utc.isoformat(),
            "closed_sessions": self.closed_sessions,
            "closed_breaks": self.closed_breaks,
            "recomputed_user_ids": list(self.recomputed_user_ids),
            "failed_user_ids": list(self.failed_user_ids),
        }


def due_sweep_day(now_utc: datetime, last_swept_day: date | None) -> date | None:
    """Return the latest business day whose cutoff has passed and is not yet swept.

    Before today's cutoff that is yesterday, so a tick missed between the
    cutoff and midnight is picked up on the next one.
    """
    local_today = local_day_from_utc(now_utc)
    if normalize_ts(now_utc) >= reconciliation_cutoff_utc(local_today):
        candidate = local_today
    else:
        candidate = local_today - timedelta(days=1)
    if last_swept_day is not None and candidate <= last_swept_day:
        return None
    return candidate


def last_swept_day_from_audit(db: Session, *, scan_limit: int = 50) -> date | None:
    rows = db.scalars(
        select(AuditLog)
        .where(AuditLog.action == SWEEP_AUDIT_ACTION, AuditLog.success.is_(True))
        .order_by(AuditLog.id.desc())
        .limit(scan_limit)
    ).all()
    swept_days = [
        date.fromisoformat(row.details["day_date"])
        for row in rows
        if isinstance(row.details, dict) and row.details.get("day_date")
    ]
    return max(swept_days, default=None)


def find_open_user_days(db: Session, *, day_date: date) -> list[int]:
    return list(
        db.scalars(
            select(DailyWorkday.user_id)
            .where(
                DailyWorkday.day_date == day_date,
                DailyWorkday.status == WorkdayStatus.OPEN,
            )
            .order_by(DailyWorkday.user_id.asc())
        ).all()
    )


def close_open_user_day(
    db: Session,
    *,
    user_id: int,
    day_date: date,
    cutoff_utc: datetime,
) -> UserDayClosure:
    """Synthesize the closers one user-day is missing, without committing."""
    closure = UserDayClosure()
    segments = find_open_segments(order_events(list_day_events(db, user_id=user_id, day_date=day_date)))
    if not segments.has_open:
        return closure

    close_at = cutoff_utc
    if segments.last_event_ts is not None and segments.last_event_ts > close_at:
        close_at = segments.last_event_ts

    if segments.break_start_ts is not None:
        append_clock_event(
            db,
            user_id=user_id,
            event_type=ClockEventType.BREAK_END,
            ts_utc=close_at,
            source=ClockEventSource.ADMINISTRATIVE,
            origin=EventOrigin.SYNTHETIC,
            note=SWEEP_BREAK_NOTE,
        )
        closure.closed_break = True
    if segments.clock_in_ts is not None:
        append_clock_event(
            db,
            user_id=user_id,
            event_type=ClockEventType.CLOCK_OUT,
            ts_utc=close_at,
            source=ClockEventSource.ADMINISTRATIVE,
            origin=EventOrigin.SYNTHETIC,
            note=SWEEP_CLOCK_OUT_NOTE,
        )
        closure.closed_session = True
    return closure


def run_reconciliation_sweep(
    now_utc: datetime,
    db: Session | None = None,
    *,
    day_date: date | None = None,
) -> SweepReport:
    """Close every session and break still open on `day_date` at the configured cutoff.

    Each user-day commits on its own; a failing user is logged and reported
    while the rest of the sweep carries on.
    """
    if db is None:
        with SessionLocal() as managed_db:
            return run_reconciliation_sweep(now_utc, db=managed_db, day_date=day_date)

    reference_utc = normalize_ts(now_utc)
    target_day = day_date or local_day_from_utc(reference_utc)
    cutoff_utc = reconciliation_cutoff_utc(target_day)
    if reference_utc < cutoff_utc:
        raise ValidationError(
            "Reconciliation cannot run before the day-end cutoff.",
            details={"day_date": target_day.isoformat(), "cutoff_utc": cutoff_utc.isoformat()},
        )

    report = SweepReport(day_date=target_day, cutoff_utc=cutoff_utc)
    user_ids = find_open_user_days(db, day_date=target_day)
    db.rollback()

    for user_id in user_ids:
        try:
            with user_day_lock(user_id, target_day):
                closure = run_in_transaction(
                    db,
                    lambda: close_open_user_day(
                        db,
                        user_id=user_id,
                        day_date=target_day,
                        cutoff_utc=cutoff_utc,
                    ),
                    name="reconciliation_close_user_day",
                )
        except Exception:
            logger.exception(
                "reconciliation_user_day_failed",
                extra={"user_id": user_id, "day_date": target_day.isoformat()},
            )
            report.failed_user_ids.append(user_id)
            continue

        if closure.closed_break:
            report.closed_breaks += 1
        if closure.closed_session:
            report.closed_sessions += 1
        if closure.closed_break or closure.closed_session:
            report.recomputed_user_ids.append(user_id)

    logger.info("reconciliation_sweep_completed", extra=report.to_dict())
    run_in_transaction(
        db,
        lambda: record_audit(
            db,
            actor_type=AuditActorType.SYSTEM,
            actor_id="reconciliation",
            action=SWEEP_AUDIT_ACTION,
            entity_type="daily_workday",
            details=report.to_dict(),
            success=not report.failed_user_ids,
        ),
        name="reconciliation_audit",
    )
    return report
