import tempfile
import unittest
from datetime import date
from pathlib import Path

from zone_reservations import ReservationStatus, ReservationYamlRepository
from zone_reservations.availability import calculate_availability, hour_labels

from support import make_record, make_zone

ON_DATE = date(2024, 6, 1)


class TestCalculateAvailability(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_dir = tempfile.TemporaryDirectory()
        self.repo = ReservationYamlRepository(Path(self._temp_dir.name) / "data")

    def tearDown(self) -> None:
        self._temp_dir.cleanup()

    def test_empty_day_lists_every_operating_hour(self) -> None:
        grid = calculate_availability(self.repo, make_zone(), ON_DATE)

        self.assertEqual(
            grid.available_slots,
            ["09:00", "10:00", "11:00", "12:00", "13:00", "14:00", "15:00", "16:00"],
        )
        self.assertEqual(grid.booked_slots, [])
        self.assertEqual(grid.total_available, 8)
        self.assertEqual(grid.total_booked, 0)

    def test_booking_marks_its_hours_as_booked(self) -> None:
        self.repo.insert_reservation(make_record("r1", 600, 2))

        grid = calculate_availability(self.repo, make_zone(), ON_DATE)

        self.assertEqual(grid.booked_slots, ["10:00", "11:00"])
        self.assertEqual(grid.total_available, 6)
        self.assertEqual(
            grid.to_dict(),
            {
                "availableSlots": ["09:00", "12:00", "13:00", "14:00", "15:00", "16:00"],
                "bookedSlots": ["10:00", "11:00"],
                "totalAvailable": 6,
                "totalBooked": 2,
            },
        )

    def test_partial_hour_overlap_books_the_whole_label(self) -> None:
        self.repo.insert_reservation(make_record("r1", 630, 1))

        grid = calculate_availability(self.repo, make_zone(), ON_DATE)

        self.assertEqual(grid.booked_slots, ["10:00", "11:00"])

    def test_inactive_reservations_do_not_block(self) -> None:
        self.repo.insert_reservation(make_record("r1", 600, 2, status=ReservationStatus.DECLINED))

        grid = calculate_availability(self.repo, make_zone(), ON_DATE)

        self.assertEqual(grid.total_available, 8)

    def test_midnight_window_is_ordered_within_the_window(self) -> None:
        zone = make_zone("22:00", "02:00")
        self.repo.insert_reservation(make_record("r1", 1440, 1))

        grid = calculate_availability(self.repo, zone, ON_DATE)

        self.assertEqual(hour_labels(zone), [1320, 1380, 1440, 1500])
        self.assertEqual(grid.available_slots, ["22:00", "23:00", "01:00"])
        self.assertEqual(grid.booked_slots, ["00:00"])

    def test_window_opening_mid_hour_starts_at_the_whole_hour(self) -> None:
        zone = make_zone("09:30", "12:00")

        self.assertEqual(calculate_availability(self.repo, zone, ON_DATE).available_slots, ["09:00", "10:00", "11:00"])


if __name__ == "__main__":
    unittest.main()
