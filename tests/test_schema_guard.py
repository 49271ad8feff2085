from __future__ import annotations

import unittest
from unittest.mock import patch

from ledger.services.schema_guard import verify_runtime_schema

_HEALTHY_COLUMNS = {
    "clock_events": {"id", "user_id", "daily_workday_id", "type", "ts_utc", "source", "origin", "note"},
    "daily_workdays": {
        "id",
        "user_id",
        "day_date",
        "scheduled_shift_id",
        "start_ts",
        "end_ts",
        "worked_minutes",
        "break_minutes",
        "overtime_minutes",
        "status",
        "is_manual",
    },
    "scheduled_shifts": {"id", "user_id", "day_date", "start_time", "end_time", "planned_minutes"},
    "audit_logs": {"id", "action", "details", "ts_utc"},
    "alembic_version": {"version_num"},
}

_HEALTHY_UNIQUES = {
    "daily_workdays": [{"name": "uq_daily_workdays_user_day"}],
    "scheduled_shifts": [{"name": "uq_scheduled_shifts_slot"}],
}

_HEALTHY_ENUMS = [
    {"name": "clock_event_type", "labels": ["clock_in", "clock_out", "break_start", "break_end"]},
    {"name": "clock_event_origin", "labels": ["GENUINE", "SYNTHETIC"]},
    {"name": "workday_status", "labels": ["open", "closed"]},
]


class _FakeResult:
    def __init__(self, value):
        self._value = value

    def scalar(self):  # type: ignore[no-untyped-def]
        return self._value


class _FakeConnection:
    def __init__(self, version_value):
        self._version_value = version_value

    def __enter__(self):  # type: ignore[no-untyped-def]
        return self

    def __exit__(self, exc_type, exc, tb):  # type: ignore[no-untyped-def]
        return False

    def execute(self, _statement):  # type: ignore[no-untyped-def]
        return _FakeResult(self._version_value)


class _FakeEngine:
    def __init__(self, version_value):
        self._version_value = version_value

    def connect(self):  # type: ignore[no-untyped-def]
        return _FakeConnection(self._version_value)


class _FakeInspector:
    def __init__(
        self,
        *,
        columns_by_table: dict[str, set[str]],
        uniques_by_table: dict[str, list[dict[str, object]]],
        enums: list[dict[str, object]],
    ):
        self._columns_by_table = columns_by_table
        self._uniques_by_table = uniques_by_table
        self._enums = enums

    def get_columns(self, table_name: str):  # type: ignore[no-untyped-def]
        columns = self._columns_by_table[table_name]
        return [{"name": item} for item in columns]

    def get_unique_constraints(self, table_name: str):  # type: ignore[no-untyped-def]
        return self._uniques_by_table.get(table_name, [])

    def get_enums(self):  # type: ignore[no-untyped-def]
        return self._enums


class SchemaGuardTests(unittest.TestCase):
    def test_verify_runtime_schema_ok_when_required_objects_exist(self) -> None:
        fake_inspector = _FakeInspector(
            columns_by_table=_HEALTHY_COLUMNS,
            uniques_by_table=_HEALTHY_UNIQUES,
            enums=_HEALTHY_ENUMS,
        )
        fake_engine = _FakeEngine("0001_initial")

        with patch("ledger.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(fake_engine)  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertEqual(result.issues, [])
        self.assertEqual(result.warnings, [])

    def test_verify_runtime_schema_reports_missing_objects(self) -> None:
        columns = dict(_HEALTHY_COLUMNS)
        columns["clock_events"] = {"id", "user_id", "type", "ts_utc", "source"}
        fake_inspector = _FakeInspector(
            columns_by_table=columns,
            uniques_by_table={"scheduled_shifts": _HEALTHY_UNIQUES["scheduled_shifts"]},
            enums=[
                {"name": "clock_event_type", "labels": ["clock_in", "clock_out"]},
                {"name": "workday_status", "labels": ["open", "closed"]},
            ],
        )
        fake_engine = _FakeEngine("")

        with patch("ledger.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(fake_engine)  # type: ignore[arg-type]

        self.assertFalse(result.ok)
        self.assertIn("MISSING_COLUMNS:clock_events:daily_workday_id,origin", result.issues)
        self.assertIn("MISSING_UNIQUE_CONSTRAINT:daily_workdays:uq_daily_workdays_user_day", result.issues)
        self.assertIn("MISSING_ENUM_VALUES:clock_event_type:break_end,break_start", result.issues)
        self.assertIn("ENUM_NOT_FOUND:clock_event_origin", result.warnings)
        self.assertIn("ALEMBIC_VERSION_EMPTY", result.issues)
        self.assertEqual(result.to_dict()["issue_count"], len(result.issues))


if __name__ == "__main__":
    unittest.main()
