from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from ledger.models import ClockEventType, WorkdayStatus
from ledger.services.workday_calc import (
    calculate_overtime_minutes,
    compute_day_totals,
    current_day_status,
    find_open_segments,
    find_sequence_violation,
    order_events,
    resolve_breaks,
)

BASE = datetime(2026, 3, 10, 8, 0, tzinfo=timezone.utc)


def _event(event_type: ClockEventType, minutes: int, event_id: int | None = None):
    return SimpleNamespace(id=event_id, type=event_type, ts_utc=BASE + timedelta(minutes=minutes))


def _example_a_events():
    # 09:00, 13:00, 13:30, 18:00 local on a UTC+1 day
    return [
        _event(ClockEventType.CLOCK_IN, 0, 1),
        _event(ClockEventType.BREAK_START, 240, 2),
        _event(ClockEventType.BREAK_END, 270, 3),
        _event(ClockEventType.CLOCK_OUT, 540, 4),
    ]


class ComputeDayTotalsTests(unittest.TestCase):
    def test_full_day_with_one_break(self) -> None:
        totals = compute_day_totals(_example_a_events())

        self.assertEqual(totals.worked_minutes, 510)
        self.assertEqual(totals.break_minutes, 30)
        self.assertEqual(totals.overtime_minutes, 0)
        self.assertEqual(totals.status, WorkdayStatus.CLOSED)
        self.assertEqual(totals.start_ts, BASE)
        self.assertEqual(totals.end_ts, BASE + timedelta(minutes=540))

    def test_same_events_always_give_same_totals(self) -> None:
        events = _example_a_events()
        self.assertEqual(compute_day_totals(events), compute_day_totals(list(events)))

    def test_worked_plus_break_equals_closed_session_span(self) -> None:
        events = [
            _event(ClockEventType.CLOCK_IN, 0, 1),
            _event(ClockEventType.BREAK_START, 100, 2),
            _event(ClockEventType.BREAK_END, 145, 3),
            _event(ClockEventType.CLOCK_OUT, 300, 4),
            _event(ClockEventType.CLOCK_IN, 360, 5),
            _event(ClockEventType.BREAK_START, 400, 6),
            _event(ClockEventType.BREAK_END, 410, 7),
            _event(ClockEventType.CLOCK_OUT, 480, 8),
        ]
        totals = compute_day_totals(events)

        self.assertEqual(totals.worked_minutes + totals.break_minutes, 300 + 120)
        self.assertEqual(totals.break_minutes, 55)
        self.assertEqual(totals.status, WorkdayStatus.CLOSED)

    def test_partial_minutes_are_floored(self) -> None:
        events = [
            SimpleNamespace(id=1, type=ClockEventType.CLOCK_IN, ts_utc=BASE),
            SimpleNamespace(id=2, type=ClockEventType.CLOCK_OUT, ts_utc=BASE + timedelta(minutes=59, seconds=59)),
        ]
        self.assertEqual(compute_day_totals(events).worked_minutes, 59)

    def test_open_session_is_left_unaccounted(self) -> None:
        totals = compute_day_totals([_event(ClockEventType.CLOCK_IN, 0, 1)])

        self.assertEqual(totals.worked_minutes, 0)
        self.assertEqual(totals.status, WorkdayStatus.OPEN)
        self.assertIsNone(totals.end_ts)

    def test_open_break_keeps_day_open(self) -> None:
        totals = compute_day_totals(
            [
                _event(ClockEventType.CLOCK_IN, 0, 1),
                _event(ClockEventType.BREAK_START, 60, 2),
            ]
        )
        self.assertEqual(totals.break_minutes, 0)
        self.assertEqual(totals.status, WorkdayStatus.OPEN)

    def test_overtime_against_planned_minutes(self) -> None:
        totals = compute_day_totals(_example_a_events(), planned_minutes=480)
        self.assertEqual(totals.overtime_minutes, 30)

    def test_no_overtime_without_a_plan(self) -> None:
        self.assertEqual(calculate_overtime_minutes(600, None), 0)
        self.assertEqual(calculate_overtime_minutes(300, 480), 0)

    def test_naive_timestamps_are_read_as_utc(self) -> None:
        events = [
            SimpleNamespace(id=1, type=ClockEventType.CLOCK_IN, ts_utc=datetime(2026, 3, 10, 8, 0)),
            SimpleNamespace(id=2, type="clock_out", ts_utc=datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)),
        ]
        self.assertEqual(compute_day_totals(events).worked_minutes, 60)


class BreakResolverTests(unittest.TestCase):
    def test_pairs_breaks_and_reports_trailing_open_break(self) -> None:
        breaks = resolve_breaks(
            [
                _event(ClockEventType.CLOCK_IN, 0, 1),
                _event(ClockEventType.BREAK_START, 60, 2),
                _event(ClockEventType.BREAK_END, 75, 3),
                _event(ClockEventType.BREAK_START, 200, 4),
            ]
        )
        self.assertEqual(len(breaks), 2)
        self.assertEqual(breaks[0].end, BASE + timedelta(minutes=75))
        self.assertIsNone(breaks[1].end)

    def test_orphan_break_end_is_ignored(self) -> None:
        breaks = resolve_breaks([_event(ClockEventType.BREAK_END, 10, 1)])
        self.assertEqual(breaks, [])


class SequenceTests(unittest.TestCase):
    def test_valid_multi_session_day(self) -> None:
        events = [
            _event(ClockEventType.CLOCK_IN, 0, 1),
            _event(ClockEventType.CLOCK_OUT, 60, 2),
            _event(ClockEventType.CLOCK_IN, 120, 3),
            _event(ClockEventType.CLOCK_OUT, 180, 4),
        ]
        self.assertIsNone(find_sequence_violation(events))
        self.assertEqual(current_day_status(events), "finished")

    def test_first_event_must_be_clock_in(self) -> None:
        violation = find_sequence_violation([_event(ClockEventType.BREAK_START, 0, 1)])
        self.assertIsNotNone(violation)
        self.assertEqual(violation.status, "not_started")

    def test_double_clock_in_is_rejected(self) -> None:
        violation = find_sequence_violation(
            [
                _event(ClockEventType.CLOCK_IN, 0, 1),
                _event(ClockEventType.CLOCK_IN, 30, 2),
            ]
        )
        self.assertEqual(violation.position, 1)
        self.assertEqual(violation.status, "working")

    def test_clock_out_while_on_break_is_rejected(self) -> None:
        violation = find_sequence_violation(
            [
                _event(ClockEventType.CLOCK_IN, 0, 1),
                _event(ClockEventType.BREAK_START, 30, 2),
                _event(ClockEventType.CLOCK_OUT, 60, 3),
            ]
        )
        self.assertEqual(violation.event_type, ClockEventType.CLOCK_OUT)
        self.assertEqual(violation.status, "on_break")

    def test_status_follows_last_event(self) -> None:
        self.assertEqual(current_day_status([]), "not_started")
        self.assertEqual(current_day_status([_event(ClockEventType.CLOCK_IN, 0, 1)]), "working")
        self.assertEqual(
            current_day_status(
                [_event(ClockEventType.CLOCK_IN, 0, 1), _event(ClockEventType.BREAK_START, 5, 2)]
            ),
            "on_break",
        )


class OrderingAndOpenSegmentTests(unittest.TestCase):
    def test_unsaved_event_sorts_after_stored_event_at_same_instant(self) -> None:
        stored = _event(ClockEventType.BREAK_END, 60, 7)
        unsaved = _event(ClockEventType.CLOCK_OUT, 60, None)
        self.assertEqual(order_events([unsaved, stored]), [stored, unsaved])

    def test_open_segments_report_pointers(self) -> None:
        segments = find_open_segments(
            [
                _event(ClockEventType.CLOCK_IN, 0, 1),
                _event(ClockEventType.BREAK_START, 90, 2),
            ]
        )
        self.assertTrue(segments.has_open)
        self.assertEqual(segments.clock_in_ts, BASE)
        self.assertEqual(segments.break_start_ts, BASE + timedelta(minutes=90))
        self.assertEqual(segments.last_event_ts, BASE + timedelta(minutes=90))


if __name__ == "__main__":
    unittest.main()
