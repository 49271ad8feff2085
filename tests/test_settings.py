from __future__ import annotations

import unittest
from datetime import date, datetime, time, timezone
from unittest.mock import patch

from pydantic import ValidationError as SettingsValidationError

from ledger.settings import Settings
from ledger.timezones import reconciliation_cutoff_utc


class ReconciliationCutoffSettingTests(unittest.TestCase):
    def test_default_cutoff_is_one_minute_before_midnight(self) -> None:
        self.assertEqual(Settings(_env_file=None).reconciliation_cutoff, time(23, 59))

    def test_cutoff_is_parsed_from_hh_mm(self) -> None:
        settings = Settings(_env_file=None, reconciliation_cutoff=" 21:30 ")
        self.assertEqual(settings.reconciliation_cutoff, time(21, 30))

    def test_malformed_cutoff_fails_when_settings_load(self) -> None:
        for raw in ("2359", "24:00", "23:60", "9:30", "", "late"):
            with self.subTest(raw=raw):
                with self.assertRaises(SettingsValidationError):
                    Settings(_env_file=None, reconciliation_cutoff=raw)

    def test_cutoff_is_read_in_the_attendance_timezone(self) -> None:
        settings = Settings(_env_file=None, reconciliation_cutoff="22:00")
        with patch("ledger.timezones.get_settings", return_value=settings):
            # Madrid is UTC+1 in March.
            self.assertEqual(
                reconciliation_cutoff_utc(date(2026, 3, 10)),
                datetime(2026, 3, 10, 21, 0, tzinfo=timezone.utc),
            )


if __name__ == "__main__":
    unittest.main()
