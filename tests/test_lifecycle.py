import re
import unittest
from dataclasses import replace
from datetime import date, datetime, timedelta
from decimal import Decimal

from zone_reservations import (
    EngineSettings,
    InvalidTransitionError,
    PaymentStatus,
    ReservationEvent,
    ReservationLifecycle,
    ReservationStatus,
)
from zone_reservations.lifecycle import generate_reference

NOW = datetime(2024, 6, 1, 7, 0)


class TestReservationLifecycle(unittest.TestCase):
    def setUp(self) -> None:
        self.lifecycle = ReservationLifecycle()
        self.pending = self.lifecycle.create(
            zone_id="zoneX",
            requester_id="userA",
            on_date=date(2024, 6, 1),
            start="10:00",
            duration_hours=2,
            start_offset=600,
            amount=Decimal("20.00"),
            now=NOW,
        )

    def test_payment_gated_create_starts_pending_with_deadline(self) -> None:
        self.assertEqual(self.pending.status, ReservationStatus.PENDING_PAYMENT)
        self.assertEqual(self.pending.payment_status, PaymentStatus.PENDING)
        self.assertEqual(self.pending.payment_deadline, NOW + timedelta(minutes=30))
        self.assertEqual(self.pending.revision, 0)

    def test_ungated_create_starts_confirmed(self) -> None:
        lifecycle = ReservationLifecycle(EngineSettings(payment_gated=False))

        record = lifecycle.create(
            zone_id="zoneX",
            requester_id="userA",
            on_date=date(2024, 6, 1),
            start="10:00",
            duration_hours=1,
            start_offset=600,
            amount=Decimal("10.00"),
            now=NOW,
        )

        self.assertEqual(record.status, ReservationStatus.CONFIRMED)
        self.assertEqual(record.payment_status, PaymentStatus.NOT_REQUIRED)
        self.assertIsNone(record.payment_deadline)

    def test_reference_format(self) -> None:
        self.assertRegex(generate_reference(), re.compile(r"^GZ-[A-Z0-9]{8}-[A-Z0-9]{4}$"))

    def test_payment_success_confirms_and_clears_deadline(self) -> None:
        paid = self.lifecycle.apply(
            self.pending, ReservationEvent.PAYMENT_SUCCEEDED, now=NOW + timedelta(minutes=5), external_ref="pay_1"
        )

        self.assertEqual(paid.status, ReservationStatus.CONFIRMED)
        self.assertEqual(paid.payment_status, PaymentStatus.PAID)
        self.assertIsNone(paid.payment_deadline)
        self.assertEqual(paid.payment_attempts[-1].external_ref, "pay_1")
        self.assertEqual(paid.revision, 1)
        self.assertEqual(self.pending.status, ReservationStatus.PENDING_PAYMENT)

    def test_payment_failure_records_reason(self) -> None:
        failed = self.lifecycle.apply(
            self.pending, ReservationEvent.PAYMENT_FAILED, now=NOW, external_ref="pay_2", reason="card declined"
        )

        self.assertEqual(failed.status, ReservationStatus.PAYMENT_FAILED)
        self.assertEqual(failed.payment_status, PaymentStatus.FAILED)
        self.assertEqual(failed.payment_failure_reason, "card declined")

    def test_deadline_exceeded_only_after_the_deadline(self) -> None:
        with self.assertRaises(InvalidTransitionError):
            self.lifecycle.apply(self.pending, ReservationEvent.DEADLINE_EXCEEDED, now=self.pending.payment_deadline)

        expired = self.lifecycle.apply(
            self.pending, ReservationEvent.DEADLINE_EXCEEDED, now=self.pending.payment_deadline + timedelta(seconds=1)
        )

        self.assertEqual(expired.status, ReservationStatus.PAYMENT_FAILED)
        self.assertEqual(expired.payment_attempts[-1].external_ref, "auto-cancel")
        self.assertEqual(expired.payment_attempts[-1].outcome, "expired")
        self.assertEqual(expired.payment_failure_reason, "Payment deadline exceeded - auto-cancelled")

    def test_terminal_states_accept_no_further_events(self) -> None:
        failed = self.lifecycle.apply(self.pending, ReservationEvent.PAYMENT_FAILED, now=NOW, external_ref="pay_2")

        for event in ReservationEvent:
            with self.subTest(event=event):
                with self.assertRaises(InvalidTransitionError):
                    self.lifecycle.apply(failed, event, now=NOW, actor="vendor", external_ref="x", reason="r")

    def test_create_is_not_applicable_to_existing_reservation(self) -> None:
        with self.assertRaises(InvalidTransitionError):
            self.lifecycle.apply(self.pending, ReservationEvent.CREATE, now=NOW)

    def test_payment_events_require_pending_payment(self) -> None:
        paid = self.lifecycle.apply(self.pending, ReservationEvent.PAYMENT_SUCCEEDED, now=NOW, external_ref="pay_1")

        with self.assertRaises(InvalidTransitionError):
            self.lifecycle.apply(paid, ReservationEvent.PAYMENT_SUCCEEDED, now=NOW, external_ref="pay_1")

    def test_cancel_outside_window_releases_payment(self) -> None:
        paid = self.lifecycle.apply(self.pending, ReservationEvent.PAYMENT_SUCCEEDED, now=NOW, external_ref="pay_1")

        cancelled = self.lifecycle.apply(paid, ReservationEvent.USER_CANCEL, now=NOW, actor="userA", reason="rain")

        self.assertEqual(cancelled.status, ReservationStatus.CANCELLED)
        self.assertEqual(cancelled.payment_status, PaymentStatus.REFUND_DUE)
        self.assertEqual(cancelled.cancellation.reason, "rain")
        self.assertEqual(cancelled.cancellation.actor, "userA")

    def test_cancel_inside_window_is_rejected(self) -> None:
        with self.assertRaises(InvalidTransitionError):
            self.lifecycle.apply(self.pending, ReservationEvent.USER_CANCEL, now=datetime(2024, 6, 1, 8, 0, 1), actor="userA")

    def test_vendor_confirm_and_single_decision(self) -> None:
        confirmed = self.lifecycle.apply(self.pending, ReservationEvent.VENDOR_CONFIRM, now=NOW, actor="vendor1")

        self.assertEqual(confirmed.status, ReservationStatus.CONFIRMED)
        self.assertEqual(confirmed.vendor_decision.decision, "confirm")
        with self.assertRaises(InvalidTransitionError):
            self.lifecycle.apply(confirmed, ReservationEvent.VENDOR_DECLINE, now=NOW, actor="vendor1", reason="late")

    def test_vendor_decline_requires_reason(self) -> None:
        with self.assertRaises(InvalidTransitionError):
            self.lifecycle.apply(self.pending, ReservationEvent.VENDOR_DECLINE, now=NOW, actor="vendor1")

        declined = self.lifecycle.apply(
            self.pending, ReservationEvent.VENDOR_DECLINE, now=NOW, actor="vendor1", reason="maintenance"
        )
        self.assertEqual(declined.status, ReservationStatus.DECLINED)
        self.assertEqual(declined.vendor_decision.reason, "maintenance")

    def test_vendor_review_status_is_configurable(self) -> None:
        lifecycle = ReservationLifecycle(EngineSettings(vendor_review_status=ReservationStatus.CONFIRMED))

        with self.assertRaises(InvalidTransitionError):
            lifecycle.apply(self.pending, ReservationEvent.VENDOR_CONFIRM, now=NOW, actor="vendor1")

        paid = lifecycle.apply(self.pending, ReservationEvent.PAYMENT_SUCCEEDED, now=NOW, external_ref="pay_1")
        declined = lifecycle.apply(paid, ReservationEvent.VENDOR_DECLINE, now=NOW, actor="vendor1", reason="closed")
        self.assertEqual(declined.payment_status, PaymentStatus.REFUND_DUE)

    def test_mark_completed_after_end(self) -> None:
        paid = self.lifecycle.apply(self.pending, ReservationEvent.PAYMENT_SUCCEEDED, now=NOW, external_ref="pay_1")

        with self.assertRaises(InvalidTransitionError):
            self.lifecycle.apply(paid, ReservationEvent.MARK_COMPLETED, now=datetime(2024, 6, 1, 11, 59))

        completed = self.lifecycle.apply(paid, ReservationEvent.MARK_COMPLETED, now=datetime(2024, 6, 1, 12, 0))
        self.assertEqual(completed.status, ReservationStatus.COMPLETED)
        self.assertEqual(completed.revision, 2)

    def test_with_new_reference_keeps_everything_else(self) -> None:
        lifecycle = ReservationLifecycle(reference_factory=lambda: "GZ-NEWREF00-0001")

        renamed = lifecycle.with_new_reference(self.pending)

        self.assertEqual(renamed, replace(self.pending, reference="GZ-NEWREF00-0001"))


if __name__ == "__main__":
    unittest.main()
