from __future__ import annotations

import unittest

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ledger.db import Base, get_db
from ledger.main import app


def _make_session() -> Session:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()


class ApiEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = _make_session()

        def _override_get_db():  # type: ignore[no-untyped-def]
            yield self.db

        app.dependency_overrides[get_db] = _override_get_db
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.db.close()

    def _clock(self, event_type: str, ts_utc: str, user_id: int = 1):  # type: ignore[no-untyped-def]
        return self.client.post(
            "/api/clock-events",
            json={
                "user_id": user_id,
                "type": event_type,
                "source": "administrative",
                "ts_utc": ts_utc,
            },
        )

    def test_clock_flow_returns_event_and_workday(self) -> None:
        response = self._clock("clock_in", "2026-03-10T08:00:00Z")
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["event"]["type"], "clock_in")
        self.assertFalse(body["event"]["auto_generated"])
        self.assertEqual(body["workday"]["status"], "open")

        response = self._clock("clock_out", "2026-03-10T16:30:00Z")
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["workday"]["worked_minutes"], 510)
        self.assertEqual(body["workday"]["status"], "closed")

        listing = self.client.get(
            "/api/daily-workdays",
            params={"start_date": "2026-03-10", "end_date": "2026-03-10", "user_id": 1},
        )
        self.assertEqual(listing.status_code, 200)
        self.assertEqual(len(listing.json()), 1)
        self.assertEqual(len(listing.json()[0]["events"]), 2)

        events = self.client.get(
            "/api/clock-events",
            params={"user_id": 1, "start_date": "2026-03-10", "end_date": "2026-03-10"},
        )
        self.assertEqual([item["type"] for item in events.json()], ["clock_in", "clock_out"])

    def test_sequence_error_is_rendered_with_details(self) -> None:
        self._clock("clock_in", "2026-03-10T08:00:00Z")

        response = self.client.post(
            "/api/clock-events",
            json={"user_id": 1, "type": "break_end", "source": "administrative", "ts_utc": "2026-03-10T09:00:00Z"},
            headers={"X-Request-Id": "req-123"},
        )

        self.assertEqual(response.status_code, 409)
        error = response.json()["error"]
        self.assertEqual(error["code"], "INVALID_EVENT_SEQUENCE")
        self.assertEqual(error["request_id"], "req-123")
        self.assertEqual(error["details"]["current_status"], "working")
        self.assertEqual(response.headers["X-Request-Id"], "req-123")

    def test_first_event_must_be_clock_in(self) -> None:
        response = self._clock("clock_out", "2026-03-10T08:00:00Z")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"]["code"], "INVALID_EVENT_SEQUENCE")

    def test_unknown_event_type_is_validation_error(self) -> None:
        response = self._clock("lunch", "2026-03-10T08:00:00Z")
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")

    def test_today_snapshot_for_idle_user(self) -> None:
        response = self.client.get("/api/users/42/today")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["current_status"], "not_started")
        self.assertIsNone(response.json()["workday"])

    def test_manual_workday_lifecycle(self) -> None:
        response = self.client.post(
            "/api/admin/daily-workdays",
            json={
                "user_id": 7,
                "day_date": "2026-03-10",
                "start_time": "09:00",
                "end_time": "17:00",
                "break_minutes": 30,
            },
            headers={"X-Actor-Id": "hr-admin"},
        )
        self.assertEqual(response.status_code, 201)
        body = response.json()
        workday_id = body["workday"]["id"]
        self.assertEqual(body["workday"]["worked_minutes"], 450)
        self.assertTrue(body["workday"]["is_manual"])
        self.assertEqual(len(body["events"]), 4)
        self.assertTrue(all(item["origin"] == "SYNTHETIC" for item in body["events"]))
        self.assertEqual(len(body["breaks"]), 1)

        duplicate = self.client.post(
            "/api/admin/daily-workdays",
            json={"user_id": 7, "day_date": "2026-03-10", "start_time": "10:00", "end_time": "12:00"},
        )
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.json()["error"]["code"], "MANUAL_WORKDAY_CONFLICT")

        updated = self.client.patch(f"/api/admin/daily-workdays/{workday_id}", json={"break_minutes": 0})
        self.assertEqual(updated.status_code, 200)
        self.assertEqual(updated.json()["workday"]["worked_minutes"], 480)
        self.assertEqual(updated.json()["breaks"], [])

        deleted = self.client.delete(f"/api/admin/daily-workdays/{workday_id}")
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(deleted.json(), {"ok": True, "id": workday_id})

        missing = self.client.get(f"/api/daily-workdays/{workday_id}")
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["error"]["code"], "NOT_FOUND")

    def test_manual_workday_with_invalid_window(self) -> None:
        response = self.client.post(
            "/api/admin/daily-workdays",
            json={"user_id": 7, "day_date": "2026-03-10", "start_time": "17:00", "end_time": "09:00"},
        )
        self.assertEqual(response.status_code, 422)

    def test_bulk_schedule_is_idempotent(self) -> None:
        payload = {
            "schedules": [
                {"user_id": 1, "day_date": "2026-03-10", "start_time": "09:00", "end_time": "17:00"},
                {"user_id": 1, "day_date": "2026-03-11", "start_time": "09:00", "end_time": "17:00"},
            ]
        }

        first = self.client.post("/api/admin/schedules/bulk", json=payload)
        second = self.client.post("/api/admin/schedules/bulk", json=payload)

        self.assertEqual(first.status_code, 201)
        self.assertEqual(first.json()["created_count"], 2)
        self.assertEqual(second.json()["created"], [])
        self.assertEqual(second.json()["skipped_count"], 2)

        listing = self.client.get("/api/schedules", params={"start_date": "2026-03-01", "end_date": "2026-03-31"})
        self.assertEqual(len(listing.json()), 2)

    def test_reconciliation_run_for_past_day(self) -> None:
        self._clock("clock_in", "2026-03-10T07:00:00Z", user_id=3)

        response = self.client.post("/api/admin/reconciliation/run", json={"day_date": "2026-03-10"})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["closed_sessions"], 1)
        self.assertEqual(body["recomputed_user_ids"], [3])

        detail = self.client.get("/api/daily-workdays", params={"start_date": "2026-03-10", "end_date": "2026-03-10"})
        self.assertEqual(detail.json()[0]["workday"]["worked_minutes"], 959)

    def test_health_reports_schema_guard_state(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")
        self.assertIn("schema_guard", response.json())


if __name__ == "__main__":
    unittest.main()
