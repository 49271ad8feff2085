from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Literal, Protocol, Sequence

from ledger.models import ClockEventType, WorkdayStatus
from ledger.timezones import normalize_ts

DayStatus = Literal["not_started", "working", "on_break", "finished"]


class ClockEventLike(Protocol):
    type: ClockEventType
    ts_utc: datetime


@dataclass(frozen=True)
class Break:
    start: datetime
    end: datetime | None


@dataclass(frozen=True)
class DayTotals:
    worked_minutes: int
    break_minutes: int
    overtime_minutes: int
    start_ts: datetime | None
    end_ts: datetime | None
    status: WorkdayStatus


@dataclass(frozen=True)
class OpenSegments:
    clock_in_ts: datetime | None
    break_start_ts: datetime | None
    last_event_ts: datetime | None

    @property
    def has_open(self) -> bool:
        return self.clock_in_ts is not None or self.break_start_ts is not None


@dataclass(frozen=True)
class SequenceViolation:
    position: int
    event_type: ClockEventType
    status: DayStatus


_ALLOWED_NEXT: dict[str, frozenset[ClockEventType]] = {
    "not_started": frozenset({ClockEventType.CLOCK_IN}),
    "working": frozenset({ClockEventType.BREAK_START, ClockEventType.CLOCK_OUT}),
    "on_break": frozenset({ClockEventType.BREAK_END}),
    "finished": frozenset({ClockEventType.CLOCK_IN}),
}

_STATUS_AFTER: dict[ClockEventType, DayStatus] = {
    ClockEventType.CLOCK_IN: "working",
    ClockEventType.CLOCK_OUT: "finished",
    ClockEventType.BREAK_START: "on_break",
    ClockEventType.BREAK_END: "working",
}


def minutes_between(start: datetime, end: datetime) -> int:
    seconds = (normalize_ts(end) - normalize_ts(start)).total_seconds()
    return max(0, int(seconds // 60))


def order_events(events: Iterable[ClockEventLike]) -> list[ClockEventLike]:
    # Unflushed events have no id yet and sort after stored ones at the same instant.
    def _key(event: ClockEventLike) -> tuple[datetime, bool, int]:
        event_id = getattr(event, "id", None)
        return normalize_ts(event.ts_utc), event_id is None, event_id or 0

    return sorted(events, key=_key)


def calculate_overtime_minutes(worked_minutes: int, planned_minutes: int | None) -> int:
    if planned_minutes is None:
        return 0
    return max(0, worked_minutes - max(0, planned_minutes))


class _DayScan:
    """Single forward pass over a user-day with one open pointer for work and one for breaks."""

    def __init__(self) -> None:
        self.worked_minutes = 0
        self.break_minutes = 0
        self.start_ts: datetime | None = None
        self.end_ts: datetime | None = None
        self.last_clock_in: datetime | None = None
        self.last_break_start: datetime | None = None
        self.last_event_ts: datetime | None = None
        self.seen_clock_out = False
        self._session_break_minutes = 0

    def feed(self, event: ClockEventLike) -> None:
        ts = normalize_ts(event.ts_utc)
        event_type = ClockEventType(event.type)
        self.last_event_ts = ts

        if event_type == ClockEventType.CLOCK_IN:
            if self.start_ts is None:
                self.start_ts = ts
            self.last_clock_in = ts
            self._session_break_minutes = 0
        elif event_type == ClockEventType.CLOCK_OUT:
            if self.last_clock_in is not None:
                session_minutes = minutes_between(self.last_clock_in, ts)
                self.worked_minutes += max(0, session_minutes - self._session_break_minutes)
                self.last_clock_in = None
            self._session_break_minutes = 0
            self.end_ts = ts
            self.seen_clock_out = True
        elif event_type == ClockEventType.BREAK_START:
            self.last_break_start = ts
        elif event_type == ClockEventType.BREAK_END:
            if self.last_break_start is not None:
                minutes = minutes_between(self.last_break_start, ts)
                self.break_minutes += minutes
                if self.last_clock_in is not None:
                    self._session_break_minutes += minutes
                self.last_break_start = None

    @property
    def status(self) -> WorkdayStatus:
        if self.last_clock_in is not None or self.last_break_start is not None:
            return WorkdayStatus.OPEN
        if not self.seen_clock_out:
            return WorkdayStatus.OPEN
        return WorkdayStatus.CLOSED


def _scan(events: Iterable[ClockEventLike]) -> _DayScan:
    scan = _DayScan()
    for event in events:
        scan.feed(event)
    return scan


def compute_day_totals(
    events: Sequence[ClockEventLike],
    *,
    planned_minutes: int | None = None,
) -> DayTotals:
    """Reduce one user-day's events, ascending by timestamp, into its daily totals.

    Worked minutes are the closed work sessions minus the breaks taken inside
    them. A clock-in or break-start without a closer leaves its segment
    unaccounted and keeps the day open.
    """
    scan = _scan(events)
    return DayTotals(
        worked_minutes=scan.worked_minutes,
        break_minutes=scan.break_minutes,
        overtime_minutes=calculate_overtime_minutes(scan.worked_minutes, planned_minutes),
        start_ts=scan.start_ts,
        end_ts=scan.end_ts,
        status=scan.status,
    )


def find_open_segments(events: Sequence[ClockEventLike]) -> OpenSegments:
    scan = _scan(events)
    return OpenSegments(
        clock_in_ts=scan.last_clock_in,
        break_start_ts=scan.last_break_start,
        last_event_ts=scan.last_event_ts,
    )


def resolve_breaks(events: Sequence[ClockEventLike]) -> list[Break]:
    breaks: list[Break] = []
    current_start: datetime | None = None

    for event in events:
        event_type = ClockEventType(event.type)
        if event_type == ClockEventType.BREAK_START:
            if current_start is not None:
                breaks.append(Break(start=current_start, end=None))
            current_start = normalize_ts(event.ts_utc)
        elif event_type == ClockEventType.BREAK_END and current_start is not None:
            breaks.append(Break(start=current_start, end=normalize_ts(event.ts_utc)))
            current_start = None

    if current_start is not None:
        breaks.append(Break(start=current_start, end=None))
    return breaks


def current_day_status(events: Sequence[ClockEventLike]) -> DayStatus:
    if not events:
        return "not_started"
    return _STATUS_AFTER[ClockEventType(events[-1].type)]


def find_sequence_violation(events: Sequence[ClockEventLike]) -> SequenceViolation | None:
    status: DayStatus = "not_started"
    for position, event in enumerate(events):
        event_type = ClockEventType(event.type)
        if event_type not in _ALLOWED_NEXT[status]:
            return SequenceViolation(position=position, event_type=event_type, status=status)
        status = _STATUS_AFTER[event_type]
    return None
