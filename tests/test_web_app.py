import tempfile
import unittest
from unittest import mock
from datetime import datetime
from pathlib import Path

from zone_reservations import RecordingNotificationSink, ReservationStorageError, ReservationYamlRepository
from zone_reservations.web_app import create_app

from support import MutableClock, make_zone


class TestWebApp(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_dir = tempfile.TemporaryDirectory()
        data_dir = Path(self._temp_dir.name) / "data"
        ReservationYamlRepository(data_dir).upsert_zone(make_zone())
        self.clock = MutableClock(datetime(2024, 6, 1, 8, 0))
        self.sink = RecordingNotificationSink()
        self.app = create_app(data_dir, now_provider=self.clock, notifier=self.sink)
        self.client = self.app.test_client()

    def tearDown(self) -> None:
        self._temp_dir.cleanup()

    def _create(self, start: str = "10:00", duration_hours: int = 2, requester_id: str = "userA"):
        return self.client.post(
            "/api/reservations",
            json={
                "zone_id": "zoneX",
                "requester_id": requester_id,
                "date": "2024-06-01",
                "start": start,
                "duration_hours": duration_hours,
            },
        )

    def test_create_then_fetch_reservation(self) -> None:
        response = self._create()

        self.assertEqual(response.status_code, 201)
        reservation = response.get_json()["reservation"]
        self.assertEqual(reservation["status"], "pending_payment")
        self.assertEqual(reservation["amount"], "20.00")

        fetched = self.client.get(f"/api/reservations/{reservation['reservation_id']}")
        self.assertEqual(fetched.status_code, 200)
        self.assertEqual(fetched.get_json()["reservation"]["reference"], reservation["reference"])

    def test_conflict_maps_to_409_with_interval(self) -> None:
        self._create()

        response = self._create(start="11:00", duration_hours=1, requester_id="userB")

        self.assertEqual(response.status_code, 409)
        payload = response.get_json()
        self.assertFalse(payload["ok"])
        self.assertEqual(payload["error"], "ConflictDetected")
        self.assertEqual(payload["conflicting"], {"start": "10:00", "end": "12:00"})

    def test_validation_and_hours_errors_map_to_400(self) -> None:
        outside = self._create(start="16:00")
        malformed = self._create(start="4pm")
        bad_duration = self._create(duration_hours=12)

        self.assertEqual(outside.status_code, 400)
        self.assertEqual(outside.get_json()["operating_hours"], {"open": "09:00", "close": "17:00"})
        self.assertEqual(malformed.status_code, 400)
        self.assertEqual(malformed.get_json()["error"], "MalformedTimeError")
        self.assertEqual(bad_duration.status_code, 400)
        self.assertEqual(bad_duration.get_json()["field"], "duration_hours")

    def test_unknown_ids_map_to_404(self) -> None:
        self.assertEqual(self.client.get("/api/reservations/missing").status_code, 404)
        self.assertEqual(self.client.get("/api/zones/missing/availability/2024-06-01").status_code, 404)

    def test_availability_endpoint(self) -> None:
        self._create()

        payload = self.client.get("/api/zones/zoneX/availability/2024-06-01").get_json()

        self.assertEqual(payload["bookedSlots"], ["10:00", "11:00"])
        self.assertEqual(payload["totalAvailable"], 6)

    def test_payment_then_invalid_repeat(self) -> None:
        reservation_id = self._create().get_json()["reservation"]["reservation_id"]

        paid = self.client.post(
            f"/api/reservations/{reservation_id}/payment",
            json={"outcome": "succeeded", "external_ref": "pay_1"},
        )
        repeat = self.client.post(
            f"/api/reservations/{reservation_id}/payment",
            json={"outcome": "succeeded", "external_ref": "pay_1"},
        )

        self.assertEqual(paid.status_code, 200)
        self.assertEqual(paid.get_json()["reservation"]["status"], "confirmed")
        self.assertEqual(repeat.status_code, 409)
        self.assertEqual(repeat.get_json()["from_status"], "confirmed")

    def test_cancel_and_vendor_decision(self) -> None:
        first = self._create(start="14:00").get_json()["reservation"]["reservation_id"]
        second = self._create(start="10:00").get_json()["reservation"]["reservation_id"]

        cancelled = self.client.post(f"/api/reservations/{first}/cancel", json={"actor_id": "userA"})
        declined = self.client.post(
            f"/api/reservations/{second}/vendor-decision",
            json={"actor_id": "vendor1", "decision": "decline", "reason": "maintenance"},
        )

        self.assertEqual(cancelled.get_json()["reservation"]["status"], "cancelled")
        self.assertEqual(declined.get_json()["reservation"]["status"], "declined")

    def test_expiry_sweep_and_health(self) -> None:
        self._create()
        self.clock.advance(minutes=31)

        sweep = self.client.post("/api/maintenance/expiry-sweep")
        health = self.client.get("/api/maintenance/health").get_json()

        sweep_payload = sweep.get_json()
        self.assertTrue(sweep_payload["ok"])
        self.assertEqual(sweep_payload["reclaimed"], 1)
        self.assertEqual(sweep_payload["errors"], [])
        self.assertEqual(len(sweep_payload["reclaimed_ids"]), 1)
        self.assertEqual(health["total_reclaimed"], 1)
        self.assertEqual(health["pending_payments"]["total"], 0)

    def test_storage_failure_maps_to_503_envelope(self) -> None:
        engine = self.app.extensions["zone_reservations"]

        with mock.patch.object(engine, "get_reservation", side_effect=ReservationStorageError("lock timed out")):
            response = self.client.get("/api/reservations/any")

        self.assertEqual(response.status_code, 503)
        self.assertEqual(
            response.get_json(),
            {"ok": False, "error": "ReservationStorageError", "message": "lock timed out"},
        )


if __name__ == "__main__":
    unittest.main()
