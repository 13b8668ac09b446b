from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any

from .booking import normalize_start, to_minutes, to_time, window_span
from .errors import ValidationError


class ReservationStatus(Enum):
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    PAYMENT_FAILED = "payment_failed"
    COMPLETED = "completed"


class PaymentStatus(Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUND_DUE = "refund_due"
    NOT_REQUIRED = "not_required"


ACTIVE_STATUSES = frozenset({ReservationStatus.PENDING_PAYMENT, ReservationStatus.CONFIRMED})
TERMINAL_STATUSES = frozenset(
    {
        ReservationStatus.DECLINED,
        ReservationStatus.CANCELLED,
        ReservationStatus.PAYMENT_FAILED,
        ReservationStatus.COMPLETED,
    }
)

WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


@dataclass(frozen=True)
class OperatingHours:
    open: str
    close: str

    def __post_init__(self) -> None:
        # Fails fast with MalformedTimeError on bad input.
        to_minutes(self.open)
        to_minutes(self.close)

    @property
    def open_minutes(self) -> int:
        return to_minutes(self.open)

    @property
    def close_minutes(self) -> int:
        """Closing offset on the window's own timeline (past 1440 when wrapping)."""
        normalized_end, _ = window_span(self.open_minutes, to_minutes(self.close))
        return normalized_end

    @property
    def crosses_midnight(self) -> bool:
        _, crosses = window_span(self.open_minutes, to_minutes(self.close))
        return crosses

    def place(self, start: str) -> int:
        return normalize_start(to_minutes(start), self.open_minutes, self.crosses_midnight)

    def to_dict(self) -> dict[str, str]:
        return {"open": self.open, "close": self.close}


@dataclass(frozen=True)
class PricingTier:
    multiplier: Decimal
    days: tuple[str, ...] = ()
    start: str | None = None
    end: str | None = None
    holidays: bool = False

    def __post_init__(self) -> None:
        unknown = [day for day in self.days if day not in WEEKDAY_NAMES]
        if unknown:
            raise ValidationError(f"Unknown weekday names in pricing tier: {unknown}", field="pricing_tiers")
        if (self.start is None) != (self.end is None):
            raise ValidationError("Pricing tier start and end must be given together.", field="pricing_tiers")

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"multiplier": str(self.multiplier)}
        if self.days:
            payload["days"] = list(self.days)
        if self.start is not None:
            payload["start"] = self.start
            payload["end"] = self.end
        if self.holidays:
            payload["holidays"] = True
        return payload

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "PricingTier":
        return PricingTier(
            multiplier=Decimal(str(data["multiplier"])),
            days=tuple(str(day).lower() for day in data.get("days") or ()),
            start=data.get("start"),
            end=data.get("end"),
            holidays=bool(data.get("holidays", False)),
        )


@dataclass(frozen=True)
class SubSelection:
    name: str
    hours: int
    rate_per_hour: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "hours": self.hours, "rate_per_hour": str(self.rate_per_hour)}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "SubSelection":
        return SubSelection(
            name=str(data["name"]),
            hours=int(data["hours"]),
            rate_per_hour=Decimal(str(data["rate_per_hour"])),
        )


@dataclass(frozen=True)
class Zone:
    zone_id: str
    name: str
    operating_hours: OperatingHours
    rate_per_hour: Decimal
    capacity: int = 1
    max_duration_hours: int | None = None
    is_active: bool = True
    vendor_id: str | None = None
    pricing_tiers: tuple[PricingTier, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "zone_id": self.zone_id,
            "name": self.name,
            "operating_hours": self.operating_hours.to_dict(),
            "rate_per_hour": str(self.rate_per_hour),
            "capacity": self.capacity,
            "max_duration_hours": self.max_duration_hours,
            "is_active": self.is_active,
            "vendor_id": self.vendor_id,
            "pricing_tiers": [tier.to_dict() for tier in self.pricing_tiers],
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Zone":
        hours = data["operating_hours"]
        max_duration = data.get("max_duration_hours")
        return Zone(
            zone_id=str(data["zone_id"]),
            name=str(data.get("name") or data["zone_id"]),
            operating_hours=OperatingHours(open=str(hours["open"]), close=str(hours["close"])),
            rate_per_hour=Decimal(str(data["rate_per_hour"])),
            capacity=int(data.get("capacity", 1)),
            max_duration_hours=int(max_duration) if max_duration is not None else None,
            is_active=bool(data.get("is_active", True)),
            vendor_id=(str(data["vendor_id"]) if data.get("vendor_id") is not None else None),
            pricing_tiers=tuple(PricingTier.from_dict(row) for row in data.get("pricing_tiers") or ()),
        )


@dataclass(frozen=True)
class PaymentAttempt:
    attempted_at: datetime
    external_ref: str
    outcome: str
    note: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempted_at": self.attempted_at.isoformat(timespec="seconds"),
            "external_ref": self.external_ref,
            "outcome": self.outcome,
            "note": self.note,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "PaymentAttempt":
        return PaymentAttempt(
            attempted_at=datetime.fromisoformat(str(data["attempted_at"])),
            external_ref=str(data["external_ref"]),
            outcome=str(data["outcome"]),
            note=(str(data["note"]) if data.get("note") is not None else None),
        )


@dataclass(frozen=True)
class Cancellation:
    reason: str | None
    actor: str
    at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"reason": self.reason, "actor": self.actor, "at": self.at.isoformat(timespec="seconds")}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Cancellation":
        return Cancellation(
            reason=(str(data["reason"]) if data.get("reason") is not None else None),
            actor=str(data["actor"]),
            at=datetime.fromisoformat(str(data["at"])),
        )


@dataclass(frozen=True)
class VendorDecision:
    decision: str
    actor: str
    at: datetime
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision": self.decision,
            "actor": self.actor,
            "at": self.at.isoformat(timespec="seconds"),
            "reason": self.reason,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "VendorDecision":
        return VendorDecision(
            decision=str(data["decision"]),
            actor=str(data["actor"]),
            at=datetime.fromisoformat(str(data["at"])),
            reason=(str(data["reason"]) if data.get("reason") is not None else None),
        )


@dataclass(frozen=True)
class ReservationRecord:
    reservation_id: str
    zone_id: str
    requester_id: str
    date: date
    start: str
    duration_hours: int
    start_offset: int
    status: ReservationStatus
    payment_status: PaymentStatus
    amount: Decimal
    reference: str
    created_at: datetime
    updated_at: datetime
    payment_deadline: datetime | None = None
    payment_attempts: tuple[PaymentAttempt, ...] = ()
    cancellation: Cancellation | None = None
    vendor_decision: VendorDecision | None = None
    payment_failure_reason: str | None = None
    notes: str | None = None
    selections: tuple[SubSelection, ...] = field(default=())
    revision: int = 0

    @property
    def end_offset(self) -> int:
        return self.start_offset + self.duration_hours * 60

    @property
    def end(self) -> str:
        return to_time(self.end_offset)

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.date, time.min) + timedelta(minutes=self.start_offset)

    @property
    def ends_at(self) -> datetime:
        return datetime.combine(self.date, time.min) + timedelta(minutes=self.end_offset)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def describe_interval(self) -> str:
        return f"{self.start}-{self.end} on {self.date.isoformat()}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "reservation_id": self.reservation_id,
            "zone_id": self.zone_id,
            "requester_id": self.requester_id,
            "date": self.date.isoformat(),
            "start": self.start,
            "duration_hours": self.duration_hours,
            "start_offset": self.start_offset,
            "status": self.status.value,
            "payment_status": self.payment_status.value,
            "amount": str(self.amount),
            "reference": self.reference,
            "created_at": self.created_at.isoformat(timespec="seconds"),
            "updated_at": self.updated_at.isoformat(timespec="seconds"),
            "payment_deadline": (
                self.payment_deadline.isoformat(timespec="seconds") if self.payment_deadline is not None else None
            ),
            "payment_attempts": [attempt.to_dict() for attempt in self.payment_attempts],
            "cancellation": self.cancellation.to_dict() if self.cancellation is not None else None,
            "vendor_decision": self.vendor_decision.to_dict() if self.vendor_decision is not None else None,
            "payment_failure_reason": self.payment_failure_reason,
            "notes": self.notes,
            "selections": [selection.to_dict() for selection in self.selections],
            "revision": self.revision,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "ReservationRecord":
        deadline = data.get("payment_deadline")
        cancellation = data.get("cancellation")
        vendor_decision = data.get("vendor_decision")
        return ReservationRecord(
            reservation_id=str(data["reservation_id"]),
            zone_id=str(data["zone_id"]),
            requester_id=str(data["requester_id"]),
            date=date.fromisoformat(str(data["date"])),
            start=str(data["start"]),
            duration_hours=int(data["duration_hours"]),
            start_offset=int(data["start_offset"]),
            status=ReservationStatus(str(data["status"])),
            payment_status=PaymentStatus(str(data["payment_status"])),
            amount=Decimal(str(data["amount"])),
            reference=str(data["reference"]),
            created_at=datetime.fromisoformat(str(data["created_at"])),
            updated_at=datetime.fromisoformat(str(data["updated_at"])),
            payment_deadline=datetime.fromisoformat(str(deadline)) if deadline is not None else None,
            payment_attempts=tuple(PaymentAttempt.from_dict(row) for row in data.get("payment_attempts") or ()),
            cancellation=Cancellation.from_dict(cancellation) if cancellation else None,
            vendor_decision=VendorDecision.from_dict(vendor_decision) if vendor_decision else None,
            payment_failure_reason=(
                str(data["payment_failure_reason"]) if data.get("payment_failure_reason") is not None else None
            ),
            notes=(str(data["notes"]) if data.get("notes") is not None else None),
            selections=tuple(SubSelection.from_dict(row) for row in data.get("selections") or ()),
            revision=int(data.get("revision", 0)),
        )
