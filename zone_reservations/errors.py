from __future__ import annotations

from typing import Any


class ReservationError(Exception):
    """Base class for every error the reservation engine reports to callers."""


class ValidationError(ReservationError, ValueError):
    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class MalformedTimeError(ValidationError):
    def __init__(self, value: Any) -> None:
        super().__init__(f"Time must be in HH:MM format (00:00-23:59), got {value!r}.", field="time")
        self.value = value


class OutsideOperatingHoursError(ReservationError):
    def __init__(self, operating_hours: dict[str, str], requested: dict[str, Any]) -> None:
        super().__init__(
            "Booking time is outside operating hours "
            f"({operating_hours['open']}-{operating_hours['close']}): "
            f"requested {requested['start']}-{requested['end']}."
        )
        self.operating_hours = operating_hours
        self.requested = requested


class ConflictDetected(ReservationError):
    def __init__(self, conflicting: Any | None, description: str) -> None:
        super().__init__(description)
        self.conflicting = conflicting
        self.description = description

    @property
    def conflicting_interval(self) -> dict[str, str] | None:
        if self.conflicting is None:
            return None
        return {"start": self.conflicting.start, "end": self.conflicting.end}


class InvalidTransitionError(ReservationError):
    def __init__(self, from_status: Any, event: Any, reason: str) -> None:
        super().__init__(f"Cannot apply {event.value} to a {from_status.value} reservation: {reason}")
        self.from_status = from_status
        self.event = event
        self.reason = reason


class NotFoundError(ReservationError, LookupError):
    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class ReservationStorageError(RuntimeError):
    pass


class DuplicateSlotError(ReservationStorageError):
    def __init__(self, zone_id: str, date_text: str, start: str) -> None:
        super().__init__(f"Active reservation already holds {zone_id} on {date_text} around {start}.")
        self.zone_id = zone_id
        self.date_text = date_text
        self.start = start


class DuplicateReferenceError(ReservationStorageError):
    pass
