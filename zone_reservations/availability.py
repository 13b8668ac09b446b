from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any

from .booking import to_time
from .models import Zone
from .yaml_store import ReservationYamlRepository


@dataclass(frozen=True)
class AvailabilityGrid:
    available_slots: list[str]
    booked_slots: list[str]

    @property
    def total_available(self) -> int:
        return len(self.available_slots)

    @property
    def total_booked(self) -> int:
        return len(self.booked_slots)

    def to_dict(self) -> dict[str, Any]:
        return {
            "availableSlots": self.available_slots,
            "bookedSlots": self.booked_slots,
            "totalAvailable": self.total_available,
            "totalBooked": self.total_booked,
        }


def hour_labels(zone: Zone) -> list[int]:
    """Whole-hour offsets covering the operating window, on the window's timeline."""
    hours = zone.operating_hours
    first = (hours.open_minutes // 60) * 60
    return list(range(first, hours.close_minutes, 60))


def calculate_availability(repository: ReservationYamlRepository, zone: Zone, on_date: date) -> AvailabilityGrid:
    """Project operating hours minus active reservations onto an hourly grid.

    Any hour a reservation touches, even partially, counts as booked. Slots are
    sorted ascending on the window's own timeline, where hours after midnight
    follow the hours before it: a 22:00-02:00 window lists 22:00, 23:00, 00:00,
    01:00. Same-day windows are therefore plain wall-clock order.
    """
    labels = hour_labels(zone)
    reservations = repository.find_active(zone.zone_id, on_date)

    booked: set[int] = set()
    for label in labels:
        label_end = label + 60
        if any(label < record.end_offset and record.start_offset < label_end for record in reservations):
            booked.add(label)

    return AvailabilityGrid(
        available_slots=[to_time(label) for label in labels if label not in booked],
        booked_slots=[to_time(label) for label in labels if label in booked],
    )
