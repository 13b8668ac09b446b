from __future__ import annotations

from .booking import MINUTES_PER_DAY, to_minutes, to_time
from .errors import OutsideOperatingHoursError
from .models import OperatingHours


def requested_interval(hours: OperatingHours, start: str, duration_hours: int) -> tuple[int, int]:
    """Return the ``[start, end)`` minute offsets of a request on the window's timeline."""
    placed = hours.place(start)
    return placed, placed + duration_hours * 60


def validate_within_operating_hours(hours: OperatingHours, start: str, duration_hours: int) -> tuple[int, int]:
    """Check that a same-day wall-clock request fits entirely inside operating hours.

    Returns the normalized ``(start, end)`` offsets when the request fits and
    raises OutsideOperatingHoursError otherwise. The calendar date plays no
    part here.
    """
    start_minutes = to_minutes(start)
    open_minutes = hours.open_minutes
    close_minutes = hours.close_minutes
    placed_start, placed_end = requested_interval(hours, start, duration_hours)

    if hours.crosses_midnight:
        fits = open_minutes <= placed_start < open_minutes + MINUTES_PER_DAY and placed_end <= close_minutes
    else:
        fits = open_minutes <= start_minutes and placed_end <= close_minutes

    if not fits:
        raise OutsideOperatingHoursError(
            operating_hours=hours.to_dict(),
            requested={"start": start, "end": to_time(placed_end), "duration_hours": duration_hours},
        )
    return placed_start, placed_end
