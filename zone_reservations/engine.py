from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import InvalidOperation
from enum import Enum
from typing import Any, TypeVar
import logging

from .availability import AvailabilityGrid, calculate_availability
from .booking import to_minutes, to_time
from .config import EngineSettings
from .conflicts import find_conflict
from .errors import (
    ConflictDetected,
    DuplicateReferenceError,
    DuplicateSlotError,
    InvalidTransitionError,
    NotFoundError,
    ReservationStorageError,
    ValidationError,
)
from .hours import validate_within_operating_hours
from .lifecycle import ReservationEvent, ReservationLifecycle
from .models import PaymentStatus, ReservationRecord, ReservationStatus, SubSelection, Zone
from .notifications import (
    LoggingNotificationSink,
    NotificationSink,
    PaymentFailed,
    PaymentSucceeded,
    ReservationCancelled,
    ReservationConfirmed,
    ReservationCreated,
    ReservationDeclined,
    ReservationExpired,
    deliver,
)
from .pricing import calculate_amount
from .yaml_store import ReservationYamlRepository

logger = logging.getLogger(__name__)

REFERENCE_ATTEMPTS = 5
WRITE_ATTEMPTS = 3


class PaymentOutcome(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class VendorDecisionKind(Enum):
    CONFIRM = "confirm"
    DECLINE = "decline"


@dataclass(frozen=True)
class SweepError:
    reservation_id: str
    reference: str
    error: str
    timestamp: datetime

    def to_dict(self) -> dict[str, str]:
        return {
            "reservation_id": self.reservation_id,
            "reference": self.reference,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(timespec="seconds"),
        }


@dataclass(frozen=True)
class SweepResult:
    reclaimed: int
    errors: list[SweepError] = field(default_factory=list)
    reclaimed_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "reclaimed": self.reclaimed,
            "errors": [error.to_dict() for error in self.errors],
            "reclaimed_ids": self.reclaimed_ids,
        }


class ReservationEngine:
    """Entry point for every reservation operation.

    Creation runs operating-hours validation, the conflict pre-check, pricing
    and the initial lifecycle state, then relies on the store's uniqueness
    check for the final word on exclusivity. Every later change is a single
    lifecycle event committed with a conditional write.
    """

    def __init__(
        self,
        repository: ReservationYamlRepository,
        settings: EngineSettings | None = None,
        notifier: NotificationSink | None = None,
        clock: Callable[[], datetime] | None = None,
        lifecycle: ReservationLifecycle | None = None,
    ) -> None:
        self.repository = repository
        self.settings = settings or EngineSettings()
        self.notifier: NotificationSink = notifier or LoggingNotificationSink()
        self.clock: Callable[[], datetime] = clock or datetime.now
        self.lifecycle = lifecycle or ReservationLifecycle(self.settings)

    def register_zone(self, zone: Zone) -> Zone:
        if zone.rate_per_hour < 0:
            raise ValidationError("rate_per_hour must not be negative.", field="rate_per_hour")
        if zone.capacity < 1:
            raise ValidationError("capacity must be at least 1.", field="capacity")
        if zone.max_duration_hours is not None and zone.max_duration_hours < self.settings.min_duration_hours:
            raise ValidationError(
                f"max_duration_hours must be at least {self.settings.min_duration_hours}.",
                field="max_duration_hours",
            )
        return self.repository.upsert_zone(zone)

    def get_zone(self, zone_id: str) -> Zone:
        zone = self.repository.get_zone(zone_id)
        if zone is None or not zone.is_active:
            raise NotFoundError("Zone", zone_id)
        return zone

    def get_reservation(self, reservation_id: str) -> ReservationRecord:
        record = self.repository.get_reservation(reservation_id)
        if record is None:
            raise NotFoundError("Reservation", reservation_id)
        return record

    def create_reservation(
        self,
        zone_id: str,
        requester_id: str,
        on_date: date | str,
        start: str,
        duration_hours: int,
        notes: str | None = None,
        selections: Sequence[SubSelection] | None = None,
    ) -> ReservationRecord:
        now = self.clock()
        zone = self.get_zone(zone_id)
        requester_id = _require_text(requester_id, "requester_id")
        on_date = _coerce_date(on_date)
        start = to_time(to_minutes(start))
        duration_hours = self._validate_duration(zone, duration_hours)
        notes = _optional_text(notes, self.settings.max_notes_length, "notes")

        start_offset, _ = validate_within_operating_hours(zone.operating_hours, start, duration_hours)
        candidate_start = datetime.combine(on_date, time.min) + timedelta(minutes=start_offset)
        if candidate_start < now:
            raise ValidationError("Reservation start time cannot be in the past.", field="start")

        self._raise_on_conflict(zone.zone_id, on_date, start_offset, duration_hours)

        amount = calculate_amount(
            zone,
            duration_hours,
            on_date,
            start,
            selections=selections,
            holiday_country=self.settings.holiday_country,
        )
        record = self.lifecycle.create(
            zone_id=zone.zone_id,
            requester_id=requester_id,
            on_date=on_date,
            start=start,
            duration_hours=duration_hours,
            start_offset=start_offset,
            amount=amount,
            now=now,
            notes=notes,
            selections=selections or (),
        )
        stored = self._insert(record)
        logger.info(
            "Created reservation %s (%s) for zone %s %s",
            stored.reference,
            stored.status.value,
            stored.zone_id,
            stored.describe_interval(),
        )

        deliver(
            self.notifier,
            ReservationCreated(
                reservation_id=stored.reservation_id,
                zone_id=stored.zone_id,
                requester_id=stored.requester_id,
                reference=stored.reference,
                date=stored.date,
                start=stored.start,
                duration_hours=stored.duration_hours,
                amount=stored.amount,
                created_at=stored.created_at,
                payment_deadline=stored.payment_deadline,
            ),
        )
        return stored

    def get_availability(self, zone_id: str, on_date: date | str) -> AvailabilityGrid:
        zone = self.get_zone(zone_id)
        return calculate_availability(self.repository, zone, _coerce_date(on_date))

    def report_payment_outcome(
        self,
        reservation_id: str,
        outcome: PaymentOutcome | str,
        external_ref: str,
        reason: str | None = None,
    ) -> ReservationRecord:
        outcome = _coerce_enum(PaymentOutcome, outcome, "outcome")
        external_ref = _require_text(external_ref, "external_ref")
        reason = _optional_text(reason, self.settings.max_reason_length, "reason")

        if outcome is PaymentOutcome.SUCCEEDED:
            updated = self._transition(reservation_id, ReservationEvent.PAYMENT_SUCCEEDED, external_ref=external_ref)
            deliver(
                self.notifier,
                PaymentSucceeded(
                    reservation_id=updated.reservation_id,
                    zone_id=updated.zone_id,
                    requester_id=updated.requester_id,
                    external_ref=external_ref,
                    paid_at=updated.updated_at,
                ),
            )
        else:
            updated = self._transition(
                reservation_id,
                ReservationEvent.PAYMENT_FAILED,
                external_ref=external_ref,
                reason=reason,
            )
            deliver(
                self.notifier,
                PaymentFailed(
                    reservation_id=updated.reservation_id,
                    zone_id=updated.zone_id,
                    requester_id=updated.requester_id,
                    external_ref=external_ref,
                    reason=reason,
                    failed_at=updated.updated_at,
                ),
            )
        return updated

    def cancel_reservation(self, reservation_id: str, actor_id: str, reason: str | None = None) -> ReservationRecord:
        actor_id = _require_text(actor_id, "actor_id")
        reason = _optional_text(reason, self.settings.max_reason_length, "reason")

        updated = self._transition(reservation_id, ReservationEvent.USER_CANCEL, actor=actor_id, reason=reason)
        deliver(
            self.notifier,
            ReservationCancelled(
                reservation_id=updated.reservation_id,
                zone_id=updated.zone_id,
                requester_id=updated.requester_id,
                actor_id=actor_id,
                reason=reason,
                cancelled_at=updated.updated_at,
                refund_due=updated.payment_status is PaymentStatus.REFUND_DUE,
            ),
        )
        return updated

    def vendor_decide(
        self,
        reservation_id: str,
        actor_id: str,
        decision: VendorDecisionKind | str,
        reason: str | None = None,
    ) -> ReservationRecord:
        actor_id = _require_text(actor_id, "actor_id")
        decision = _coerce_enum(VendorDecisionKind, decision, "decision")
        reason = _optional_text(reason, self.settings.max_reason_length, "reason")

        if decision is VendorDecisionKind.CONFIRM:
            updated = self._transition(reservation_id, ReservationEvent.VENDOR_CONFIRM, actor=actor_id, reason=reason)
            deliver(
                self.notifier,
                ReservationConfirmed(
                    reservation_id=updated.reservation_id,
                    zone_id=updated.zone_id,
                    requester_id=updated.requester_id,
                    actor_id=actor_id,
                    confirmed_at=updated.updated_at,
                ),
            )
        else:
            updated = self._transition(reservation_id, ReservationEvent.VENDOR_DECLINE, actor=actor_id, reason=reason)
            deliver(
                self.notifier,
                ReservationDeclined(
                    reservation_id=updated.reservation_id,
                    zone_id=updated.zone_id,
                    requester_id=updated.requester_id,
                    actor_id=actor_id,
                    reason=updated.vendor_decision.reason if updated.vendor_decision else "",
                    declined_at=updated.updated_at,
                ),
            )
        return updated

    def mark_completed(self, reservation_id: str) -> ReservationRecord:
        return self._transition(reservation_id, ReservationEvent.MARK_COMPLETED)

    def complete_elapsed(self) -> int:
        """Move every confirmed reservation whose interval has ended to completed."""
        now = self.clock()
        completed = 0
        for record in self.repository.find_elapsed_confirmed(now):
            updated = self.lifecycle.apply(record, ReservationEvent.MARK_COMPLETED, now=now)
            if self.repository.compare_and_set(updated, record.status, record.revision):
                completed += 1
        if completed:
            logger.info("Completed %d elapsed reservations", completed)
        return completed

    def run_expiry_sweep(self) -> SweepResult:
        """Move every pending reservation past its payment deadline to payment_failed.

        Each write is conditional on the reservation still being pending at the
        revision that was read, so a reservation already moved by a payment
        callback or another sweep is skipped rather than processed twice.
        """
        now = self.clock()
        reclaimed: list[ReservationRecord] = []
        errors: list[SweepError] = []

        for record in self.repository.find_expired_pending(now):
            try:
                updated = self.lifecycle.apply(record, ReservationEvent.DEADLINE_EXCEEDED, now=now)
                if not self.repository.compare_and_set(updated, record.status, record.revision):
                    logger.debug("Reservation %s changed before expiry; skipping", record.reference)
                    continue
            except InvalidTransitionError as error:
                logger.debug("Reservation %s not expirable: %s", record.reference, error.reason)
                continue
            except Exception as error:
                logger.error("Error expiring reservation %s: %s", record.reference, error, exc_info=True)
                errors.append(
                    SweepError(
                        reservation_id=record.reservation_id,
                        reference=record.reference,
                        error=str(error),
                        timestamp=now,
                    )
                )
                continue

            reclaimed.append(updated)
            logger.info("Reservation %s expired: payment deadline %s passed", updated.reference, record.payment_deadline)
            deliver(
                self.notifier,
                ReservationExpired(
                    reservation_id=updated.reservation_id,
                    zone_id=updated.zone_id,
                    requester_id=updated.requester_id,
                    reference=updated.reference,
                    payment_deadline=record.payment_deadline,
                    expired_at=now,
                ),
            )

        if reclaimed or errors:
            logger.info("Expiry sweep: %d reclaimed, %d errors", len(reclaimed), len(errors))
        return SweepResult(
            reclaimed=len(reclaimed),
            errors=errors,
            reclaimed_ids=[record.reservation_id for record in reclaimed],
        )

    def pending_payment_counts(self) -> dict[str, int]:
        now = self.clock()
        pending = [
            record
            for record in self.repository.list_reservations()
            if record.status is ReservationStatus.PENDING_PAYMENT
        ]
        expired = sum(1 for record in pending if record.payment_deadline is not None and record.payment_deadline < now)
        return {"total": len(pending), "expired": expired, "active": len(pending) - expired}

    def _validate_duration(self, zone: Zone, duration_hours: Any) -> int:
        if isinstance(duration_hours, bool) or not isinstance(duration_hours, int):
            raise ValidationError("duration_hours must be a whole number of hours.", field="duration_hours")

        maximum = zone.max_duration_hours or self.settings.default_max_duration_hours
        minimum = self.settings.min_duration_hours
        if not minimum <= duration_hours <= maximum:
            raise ValidationError(
                f"duration_hours must be between {minimum} and {maximum}.",
                field="duration_hours",
            )
        return duration_hours

    def _raise_on_conflict(
        self,
        zone_id: str,
        on_date: date,
        start_offset: int,
        duration_hours: int,
        exclude_reservation_id: str | None = None,
    ) -> None:
        check = find_conflict(self.repository, zone_id, on_date, start_offset, duration_hours, exclude_reservation_id)
        if check.has_conflict:
            raise ConflictDetected(check.conflicting, check.description)

    def _insert(self, record: ReservationRecord) -> ReservationRecord:
        for _ in range(REFERENCE_ATTEMPTS):
            try:
                return self.repository.insert_reservation(record)
            except DuplicateReferenceError:
                record = self.lifecycle.with_new_reference(record)
            except DuplicateSlotError as error:
                logger.info("Slot taken concurrently for zone %s %s", record.zone_id, record.describe_interval())
                self._raise_on_conflict(record.zone_id, record.date, record.start_offset, record.duration_hours)
                raise ConflictDetected(None, str(error)) from error
        raise ReservationStorageError("Could not allocate a unique reservation reference.")

    def _transition(
        self,
        reservation_id: str,
        event: ReservationEvent,
        *,
        actor: str | None = None,
        external_ref: str | None = None,
        reason: str | None = None,
    ) -> ReservationRecord:
        for _ in range(WRITE_ATTEMPTS):
            current = self.get_reservation(reservation_id)
            updated = self.lifecycle.apply(
                current,
                event,
                now=self.clock(),
                actor=actor,
                external_ref=external_ref,
                reason=reason,
            )
            if self.repository.compare_and_set(updated, current.status, current.revision):
                logger.info(
                    "Reservation %s: %s -> %s (%s)",
                    updated.reference,
                    current.status.value,
                    updated.status.value,
                    event.value,
                )
                return updated
            logger.info("Reservation %s changed concurrently; retrying %s", current.reference, event.value)
        raise ReservationStorageError(f"Reservation {reservation_id} kept changing; gave up applying {event.value}.")


def _require_text(value: Any, field_name: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field_name} must not be empty.", field=field_name)
    return str(value).strip()


def _optional_text(value: Any, max_length: int, field_name: str) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{field_name} cannot exceed {max_length} characters.", field=field_name)
    return text


def _coerce_date(value: date | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as error:
        raise ValidationError(f"date must be YYYY-MM-DD, got {value!r}.", field="date") from error


E = TypeVar("E", bound=Enum)


def _coerce_enum(enum_type: type[E], value: E | str, field_name: str) -> E:
    if isinstance(value, enum_type):
        return value
    try:
        return enum_type(str(value).strip().lower())
    except ValueError as error:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValidationError(f"{field_name} must be one of: {allowed}.", field=field_name) from error


def parse_selections(rows: Sequence[dict[str, Any]] | None) -> list[SubSelection] | None:
    if not rows:
        return None
    try:
        return [SubSelection.from_dict(row) for row in rows]
    except (KeyError, TypeError, ValueError, InvalidOperation) as error:
        raise ValidationError(f"Invalid selections: {error}", field="selections") from error

