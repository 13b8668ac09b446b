"""Reservation state machine.

Every status change goes through ``ReservationLifecycle.apply``. It never
mutates its input: it returns the next version of the record, or raises
InvalidTransitionError and leaves the caller holding the unchanged record.

    pending_payment --payment_succeeded--> confirmed
    pending_payment --payment_failed-----> payment_failed
    pending_payment --deadline_exceeded--> payment_failed
    <review status> --vendor_confirm-----> confirmed
    <review status> --vendor_decline-----> declined
    pending_payment/confirmed --user_cancel--> cancelled
    confirmed --mark_completed--> completed
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from uuid import uuid4
import secrets
import string

from .config import EngineSettings
from .errors import InvalidTransitionError
from .models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    Cancellation,
    PaymentAttempt,
    PaymentStatus,
    ReservationRecord,
    ReservationStatus,
    SubSelection,
    VendorDecision,
)

REFERENCE_ALPHABET = string.ascii_uppercase + string.digits
EXPIRY_EXTERNAL_REF = "auto-cancel"
EXPIRY_NOTE = "Payment deadline exceeded"


class ReservationEvent(Enum):
    CREATE = "create"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    VENDOR_CONFIRM = "vendor_confirm"
    VENDOR_DECLINE = "vendor_decline"
    USER_CANCEL = "user_cancel"
    MARK_COMPLETED = "mark_completed"


_ALLOWED_SOURCES: dict[ReservationEvent, frozenset[ReservationStatus]] = {
    ReservationEvent.PAYMENT_SUCCEEDED: frozenset({ReservationStatus.PENDING_PAYMENT}),
    ReservationEvent.PAYMENT_FAILED: frozenset({ReservationStatus.PENDING_PAYMENT}),
    ReservationEvent.DEADLINE_EXCEEDED: frozenset({ReservationStatus.PENDING_PAYMENT}),
    ReservationEvent.VENDOR_CONFIRM: ACTIVE_STATUSES,
    ReservationEvent.VENDOR_DECLINE: ACTIVE_STATUSES,
    ReservationEvent.USER_CANCEL: ACTIVE_STATUSES,
    ReservationEvent.MARK_COMPLETED: frozenset({ReservationStatus.CONFIRMED}),
}


def generate_reference() -> str:
    head = "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(8))
    tail = "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(4))
    return f"GZ-{head}-{tail}"


def hours_until_start(record: ReservationRecord, now: datetime) -> float:
    return (record.starts_at - now).total_seconds() / 3600


class ReservationLifecycle:
    def __init__(
        self,
        settings: EngineSettings | None = None,
        reference_factory: Callable[[], str] = generate_reference,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.reference_factory = reference_factory
        self._handlers: dict[ReservationEvent, Callable[..., ReservationRecord]] = {
            ReservationEvent.PAYMENT_SUCCEEDED: self._payment_succeeded,
            ReservationEvent.PAYMENT_FAILED: self._payment_failed,
            ReservationEvent.DEADLINE_EXCEEDED: self._deadline_exceeded,
            ReservationEvent.VENDOR_CONFIRM: self._vendor_confirm,
            ReservationEvent.VENDOR_DECLINE: self._vendor_decline,
            ReservationEvent.USER_CANCEL: self._user_cancel,
            ReservationEvent.MARK_COMPLETED: self._mark_completed,
        }

    def create(
        self,
        *,
        zone_id: str,
        requester_id: str,
        on_date: date,
        start: str,
        duration_hours: int,
        start_offset: int,
        amount: Decimal,
        now: datetime,
        notes: str | None = None,
        selections: Sequence[SubSelection] = (),
    ) -> ReservationRecord:
        """Build the initial record. Guards (hours, conflicts, amount) are checked by the caller."""
        if self.settings.payment_gated:
            status = ReservationStatus.PENDING_PAYMENT
            payment_status = PaymentStatus.PENDING
            deadline: datetime | None = now + timedelta(minutes=self.settings.payment_window_minutes)
        else:
            status = ReservationStatus.CONFIRMED
            payment_status = PaymentStatus.NOT_REQUIRED
            deadline = None

        return ReservationRecord(
            reservation_id=str(uuid4()),
            zone_id=zone_id,
            requester_id=requester_id,
            date=on_date,
            start=start,
            duration_hours=duration_hours,
            start_offset=start_offset,
            status=status,
            payment_status=payment_status,
            amount=amount,
            reference=self.reference_factory(),
            created_at=now,
            updated_at=now,
            payment_deadline=deadline,
            notes=notes,
            selections=tuple(selections),
        )

    def with_new_reference(self, record: ReservationRecord) -> ReservationRecord:
        return replace(record, reference=self.reference_factory())

    def apply(
        self,
        record: ReservationRecord,
        event: ReservationEvent,
        *,
        now: datetime,
        actor: str | None = None,
        external_ref: str | None = None,
        reason: str | None = None,
    ) -> ReservationRecord:
        if record.status in TERMINAL_STATUSES:
            raise InvalidTransitionError(record.status, event, "reservation is in a terminal state")

        handler = self._handlers.get(event)
        if handler is None:
            raise InvalidTransitionError(record.status, event, "event cannot be applied to an existing reservation")
        if record.status not in _ALLOWED_SOURCES[event]:
            raise InvalidTransitionError(record.status, event, f"not allowed from {record.status.value}")

        updated = handler(record, now=now, actor=actor, external_ref=external_ref, reason=reason)
        return replace(updated, updated_at=now, revision=record.revision + 1)

    def _payment_succeeded(self, record: ReservationRecord, *, now: datetime, external_ref: str | None, **_: object) -> ReservationRecord:
        attempt = PaymentAttempt(attempted_at=now, external_ref=external_ref or "", outcome="succeeded")
        return replace(
            record,
            status=ReservationStatus.CONFIRMED,
            payment_status=PaymentStatus.PAID,
            payment_deadline=None,
            payment_attempts=record.payment_attempts + (attempt,),
        )

    def _payment_failed(
        self,
        record: ReservationRecord,
        *,
        now: datetime,
        external_ref: str | None,
        reason: str | None,
        **_: object,
    ) -> ReservationRecord:
        attempt = PaymentAttempt(attempted_at=now, external_ref=external_ref or "", outcome="failed", note=reason)
        return replace(
            record,
            status=ReservationStatus.PAYMENT_FAILED,
            payment_status=PaymentStatus.FAILED,
            payment_failure_reason=reason,
            payment_attempts=record.payment_attempts + (attempt,),
        )

    def _deadline_exceeded(self, record: ReservationRecord, *, now: datetime, **_: object) -> ReservationRecord:
        if record.payment_deadline is None or not now > record.payment_deadline:
            raise InvalidTransitionError(record.status, ReservationEvent.DEADLINE_EXCEEDED, "payment deadline has not passed")

        attempt = PaymentAttempt(attempted_at=now, external_ref=EXPIRY_EXTERNAL_REF, outcome="expired", note=EXPIRY_NOTE)
        return replace(
            record,
            status=ReservationStatus.PAYMENT_FAILED,
            payment_status=PaymentStatus.FAILED,
            payment_failure_reason=f"{EXPIRY_NOTE} - auto-cancelled",
            payment_attempts=record.payment_attempts + (attempt,),
        )

    def _check_vendor_review(self, record: ReservationRecord, event: ReservationEvent) -> None:
        review_status = self.settings.vendor_review_status
        if record.status is not review_status:
            raise InvalidTransitionError(
                record.status,
                event,
                f"only {review_status.value} reservations await a vendor decision",
            )
        if record.vendor_decision is not None:
            raise InvalidTransitionError(record.status, event, "vendor already decided on this reservation")

    def _vendor_confirm(self, record: ReservationRecord, *, now: datetime, actor: str | None, reason: str | None, **_: object) -> ReservationRecord:
        self._check_vendor_review(record, ReservationEvent.VENDOR_CONFIRM)
        return replace(
            record,
            status=ReservationStatus.CONFIRMED,
            payment_deadline=None,
            vendor_decision=VendorDecision(decision="confirm", actor=actor or "", at=now, reason=reason),
        )

    def _vendor_decline(self, record: ReservationRecord, *, now: datetime, actor: str | None, reason: str | None, **_: object) -> ReservationRecord:
        self._check_vendor_review(record, ReservationEvent.VENDOR_DECLINE)
        if not reason or not reason.strip():
            raise InvalidTransitionError(record.status, ReservationEvent.VENDOR_DECLINE, "decline reason is required")
        return replace(
            record,
            status=ReservationStatus.DECLINED,
            payment_status=_release_payment(record.payment_status),
            payment_deadline=None,
            vendor_decision=VendorDecision(decision="decline", actor=actor or "", at=now, reason=reason.strip()),
        )

    def _user_cancel(self, record: ReservationRecord, *, now: datetime, actor: str | None, reason: str | None, **_: object) -> ReservationRecord:
        remaining = hours_until_start(record, now)
        window = self.settings.cancellation_window_hours
        if not remaining > window:
            raise InvalidTransitionError(
                record.status,
                ReservationEvent.USER_CANCEL,
                f"cancellation closes {window:g} hours before start ({remaining:.2f} hours left)",
            )
        return replace(
            record,
            status=ReservationStatus.CANCELLED,
            payment_status=_release_payment(record.payment_status),
            payment_deadline=None,
            cancellation=Cancellation(reason=reason, actor=actor or "", at=now),
        )

    def _mark_completed(self, record: ReservationRecord, *, now: datetime, **_: object) -> ReservationRecord:
        if now < record.ends_at:
            raise InvalidTransitionError(record.status, ReservationEvent.MARK_COMPLETED, "reservation has not ended yet")
        return replace(record, status=ReservationStatus.COMPLETED)


def _release_payment(payment_status: PaymentStatus) -> PaymentStatus:
    if payment_status is PaymentStatus.PAID:
        return PaymentStatus.REFUND_DUE
    return payment_status
