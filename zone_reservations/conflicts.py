from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from .booking import has_time_overlap, to_time
from .models import ReservationRecord
from .yaml_store import ReservationYamlRepository


@dataclass(frozen=True)
class ConflictCheck:
    conflicting: ReservationRecord | None = None
    description: str = "no conflict"

    @property
    def has_conflict(self) -> bool:
        return self.conflicting is not None


def find_conflict(
    repository: ReservationYamlRepository,
    zone_id: str,
    on_date: date,
    start_offset: int,
    duration_hours: int,
    exclude_reservation_id: str | None = None,
) -> ConflictCheck:
    """Return the first active reservation overlapping the candidate interval.

    This is only a pre-flight filter for a readable error. The store's
    uniqueness check at write time is what actually keeps active intervals
    exclusive.
    """
    end_offset = start_offset + duration_hours * 60
    for existing in repository.find_active(zone_id, on_date, exclude_id=exclude_reservation_id):
        if has_time_overlap(start_offset, end_offset, existing.start_offset, existing.end_offset):
            description = (
                f"Requested {to_time(start_offset)}-{to_time(end_offset)} overlaps "
                f"reservation {existing.reference} ({existing.describe_interval()})."
            )
            return ConflictCheck(conflicting=existing, description=description)
    return ConflictCheck()
